# jobs/ — Scheduled maintenance jobs
# Each job is a plain async function. `python -m jobs <name>` runs one from cron;
# `python -m jobs crontab` prints the schedule built from the *_SCHEDULE variables.
