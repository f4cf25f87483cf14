# tests/test_email.py — Email templates and queue helpers
import pytest
from jinja2 import TemplateNotFound

import email_service
from email_service import (
    build_task_rows, priority_color, queue_multiple_tasks_reminder, queue_task_reminder,
    render_email, render_string, send_email, strip_html,
)


class TestRenderString:
    def test_variables_are_escaped(self):
        out = render_string("<p>{{ name }}</p>", {"name": "<script>alert(1)</script>"})
        assert out == "<p>&lt;script&gt;alert(1)&lt;/script&gt;</p>"

    def test_missing_values_render_empty(self):
        assert render_string("Hi {{ name }}!", {}) == "Hi !"
        assert render_string("Hi {{ name }}!", {"name": None}) == "Hi !"

    def test_safe_filter_passes_markup_through(self):
        out = render_string("{{ task_rows|safe }}|{{ invite_url|safe }}", {
            "task_rows": "<tr><td>x</td></tr>",
            "invite_url": "https://app.test/invite/abc?x=1&y=2",
        })
        assert out == "<tr><td>x</td></tr>|https://app.test/invite/abc?x=1&y=2"

    def test_if_blocks(self):
        template = "A{% if note %}<i>{{ note }}</i>{% endif %}B"
        assert render_string(template, {"note": "hello"}) == "A<i>hello</i>B"
        assert render_string(template, {"note": ""}) == "AB"
        assert render_string(template, {}) == "AB"


def test_strip_html():
    assert strip_html("<h2>Hi  Ada,</h2>\n<p>Your <b>task</b></p>") == "Hi Ada, Your task"


class TestTemplates:
    def test_task_reminder(self):
        html_body, text = render_email("task_reminder.html", {
            "user_name": "Ada",
            "task_name": "Ship <v2>",
            "due_date": "2030-01-02",
            "priority": "high",
            "priority_color": "#ef4444",
        })
        assert "Ship &lt;v2&gt;" in html_body
        assert "color: #ef4444" in html_body
        assert "Hi Ada," in text
        assert "<" not in text.replace("&lt;", "")

    def test_description_block_is_optional(self):
        data = {"user_name": "Ada", "task_name": "T", "due_date": "2030-01-02"}
        without, _ = render_email("task_reminder.html", data)
        with_desc, _ = render_email("task_reminder.html", {**data, "task_description": "Details here"})
        assert "Details here" not in without
        assert "Details here" in with_desc

    @pytest.mark.parametrize("template", [
        "email_verification.html", "multiple_tasks_reminder.html", "password_reset.html",
        "task_assignment.html", "trial_ending.html", "welcome.html", "workspace_invite.html",
    ])
    def test_every_template_renders(self, template):
        html_body, text = render_email(template, {"user_name": "Ada"})
        assert "{{" not in html_body
        assert text

    def test_invite_keeps_url_and_escapes_names(self):
        html_body, _ = render_email("workspace_invite.html", {
            "inviter_name": "Ada & Co",
            "workspace_name": "<Ops>",
            "invite_url": "https://app.test/invite/abc?x=1&y=2",
        })
        assert 'href="https://app.test/invite/abc?x=1&y=2"' in html_body
        assert "Ada &amp; Co" in html_body
        assert "&lt;Ops&gt;" in html_body

    def test_unknown_template(self):
        with pytest.raises(TemplateNotFound):
            render_email("missing.html", {})


def test_send_without_smtp(monkeypatch):
    monkeypatch.setattr(email_service, "SMTP_HOST", "")
    assert send_email("a@b.c", "Subject", "<p>x</p>", "x") == (False, "SMTP not configured")


def test_priority_color():
    assert priority_color("urgent") == "#ef4444"
    assert priority_color("high") == "#ef4444"
    assert priority_color("low") == "#22c55e"
    assert priority_color(None) == "#f59e0b"
    assert priority_color("bogus") == "#f59e0b"


def test_task_rows_escape_fields():
    rows = build_task_rows([
        {"title": "<b>Bold</b>", "due_date": "2030-01-02", "priority": "low"},
        {"title": "Plain", "due_date": None, "priority": None},
    ])
    assert "&lt;b&gt;Bold&lt;/b&gt;" in rows
    assert rows.count("<tr>") == 2
    assert "color: #22c55e;" in rows
    assert ">medium</td>" in rows


class _FakeSession:
    def __init__(self):
        self.added = []

    def add(self, obj):
        self.added.append(obj)


def test_queue_helpers_build_subjects():
    db = _FakeSession()
    single = queue_task_reminder(db, "a@todoria.dev", None, "Report", "2030-01-02", priority="urgent")
    assert single.subject == '⏰ Reminder: "Report" is due soon'
    assert single.template_data["user_name"] == "there"
    assert single.template_data["priority_color"] == "#ef4444"

    multi = queue_multiple_tasks_reminder(db, "a@todoria.dev", "Ada", [
        {"title": "One", "due_date": "2030-01-02", "priority": "low"},
        {"title": "Two", "due_date": "2030-01-03", "priority": "high"},
    ])
    assert multi.subject == "⏰ Reminder: You have 2 tasks due soon"
    assert multi.template_data["task_verb"] == "are"
    assert db.added == [single, multi]
