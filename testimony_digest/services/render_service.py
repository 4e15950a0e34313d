"""
Render service for digest emails.

Renders a DigestResult into the HTML and plain-text bodies of the digest email.
Output depends only on the digest and the configured site URL.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError, select_autoescape

from testimony_digest.core.config import DigestConfig
from testimony_digest.core.exceptions import RenderError
from testimony_digest.core.models import DigestResult, Frequency

logger = structlog.get_logger(__name__)

POSITION_LABELS = {
    "endorse": "Endorse",
    "neutral": "Neutral",
    "oppose": "Oppose",
}

FREQUENCY_LABELS = {
    Frequency.DAILY.value: "daily",
    Frequency.WEEKLY.value: "weekly",
    Frequency.MONTHLY.value: "monthly",
}


# HTML template for the notifications digest
DIGEST_TEMPLATE = """
<!doctype html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width">
    <title>{{ subject }}</title>
    <style>
      body { font-family: Georgia, "Times New Roman", serif; color: #1a1a1a; max-width: 640px; margin: 0 auto; padding: 16px; }
      a { color: #1a4480; }
      .h1 { font-size: 22px; font-weight: bold; margin-bottom: 6px; }
      .h2 { font-size: 17px; font-weight: bold; margin-bottom: 6px; border-bottom: 2px solid #1a4480; }
      .muted { color: #5c5c5c; }
      table { width: 100%; border-spacing: 0; }
      th { text-align: left; font-size: 13px; color: #5c5c5c; padding: 4px; }
      td { padding: 4px; border-top: 1px solid #e4e4e4; }
      .badge { display: inline-block; padding: 1px 8px; margin: 2px 4px 2px 0; border-radius: 10px; font-size: 12px; text-decoration: none; }
      .endorse { background: #e3f4e7; color: #1e6b34; }
      .neutral { background: #ececec; color: #444; }
      .oppose { background: #fbe4e4; color: #9b1c1c; }
      .mono { font-family: Menlo, Consolas, monospace; text-align: center; }
      .section { margin-bottom: 24px; }
      .footer { font-size: 12px; color: #777; border-top: 1px solid #e4e4e4; padding-top: 12px; }
    </style>
  </head>
  <body>
    <div class="section">
      <div class="h1">{{ subject }}</div>
      <div class="muted">Your {{ frequency_label }} digest of new testimony from {{ digest.start_date|digest_date }} to {{ digest.end_date|digest_date }}.</div>
    </div>

    {% if digest.bills %}
    <div class="section">
      <div class="h2">Bills with new testimony</div>
      <table>
        <thead><tr><th>Bill</th><th>Endorse</th><th>Neutral</th><th>Oppose</th></tr></thead>
        <tbody>
          {% for bill in digest.bills %}
          <tr>
            <td><a href="{{ site_url }}/bills/{{ bill.bill_court }}/{{ bill.bill_id }}"><strong>{{ bill.bill_id }}</strong></a>{% if bill.bill_name %} <span class="muted">{{ bill.bill_name }}</span>{% endif %}</td>
            <td class="mono">{{ bill.endorse_count }}</td>
            <td class="mono">{{ bill.neutral_count }}</td>
            <td class="mono">{{ bill.oppose_count }}</td>
          </tr>
          {% endfor %}
        </tbody>
      </table>
      {% if more_bills > 0 %}
      <div class="muted">+{{ more_bills }} more bill{{ "s" if more_bills != 1 else "" }} with new testimony</div>
      {% endif %}
    </div>
    {% endif %}

    {% if digest.users %}
    <div class="section">
      <div class="h2">Users with new testimony</div>
      {% for user in digest.users %}
      <div style="margin-bottom: 12px;">
        <a href="{{ site_url }}/profile?id={{ user.user_id }}"><strong>{{ user.user_name or user.user_id }}</strong></a>
        <span class="muted">{{ user.new_testimony_count }} new testimon{{ "ies" if user.new_testimony_count != 1 else "y" }}</span>
        <div>
          {% for bill in user.bills %}
          <a class="badge {{ bill.position }}" href="{{ site_url }}/bills/{{ bill.court }}/{{ bill.bill_id }}">{{ bill.bill_id }} · {{ bill.position|position_label }}</a>
          {% endfor %}
          {% if user.new_testimony_count > user.bills|length %}
          <span class="muted">+{{ user.new_testimony_count - user.bills|length }} more</span>
          {% endif %}
        </div>
      </div>
      {% endfor %}
      {% if more_users > 0 %}
      <div class="muted">+{{ more_users }} more user{{ "s" if more_users != 1 else "" }} with new testimony</div>
      {% endif %}
    </div>
    {% endif %}

    <div class="footer">
      <div>You are receiving this email because you follow bills or users on <a href="{{ site_url }}">{{ site_url }}</a>.</div>
      <div style="margin-top: 4px;"><a href="{{ site_url }}/editprofile?tab=notifications">Manage notification settings</a></div>
    </div>
  </body>
</html>
"""


# Plain-text alternative
DIGEST_TEXT_TEMPLATE = """{{ subject }}
Your {{ frequency_label }} digest of new testimony from {{ digest.start_date|digest_date }} to {{ digest.end_date|digest_date }}.
{% if digest.bills %}
Bills with new testimony
{% for bill in digest.bills %}- {{ bill.bill_id }}{% if bill.bill_name %} ({{ bill.bill_name }}){% endif %}: {{ bill.endorse_count }} endorse, {{ bill.neutral_count }} neutral, {{ bill.oppose_count }} oppose
  {{ site_url }}/bills/{{ bill.bill_court }}/{{ bill.bill_id }}
{% endfor %}{% if more_bills > 0 %}+{{ more_bills }} more
{% endif %}{% endif %}
{%- if digest.users %}
Users with new testimony
{% for user in digest.users %}- {{ user.user_name or user.user_id }}: {{ user.new_testimony_count }} new
{% for bill in user.bills %}  * {{ bill.bill_id }} ({{ bill.position|position_label }})
{% endfor %}{% endfor %}{% if more_users > 0 %}+{{ more_users }} more
{% endif %}{% endif %}
Manage notification settings: {{ site_url }}/editprofile?tab=notifications
"""


def format_digest_date(value: datetime) -> str:
    """Format a datetime like ``Mar 5, 2024``."""
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def position_label(value: Any) -> str:
    """Human label for a testimony position, passing unknown values through."""
    value = getattr(value, "value", value)
    return POSITION_LABELS.get(value, str(value).title())


class DigestRenderer:
    """
    Service for rendering digest emails.
    """

    def __init__(self, config: Optional[DigestConfig] = None):
        self.config = config or DigestConfig()
        self.jinja_env = Environment(
            loader=BaseLoader(),
            autoescape=select_autoescape(default_for_string=True),
            undefined=StrictUndefined,
        )
        self.jinja_env.filters["digest_date"] = format_digest_date
        self.jinja_env.filters["position_label"] = position_label

        # Load templates
        try:
            self.digest_template = self.jinja_env.from_string(DIGEST_TEMPLATE)
            # Plain text is never HTML-escaped
            self.text_env = Environment(loader=BaseLoader(), undefined=StrictUndefined)
            self.text_env.filters.update(self.jinja_env.filters)
            self.text_template = self.text_env.from_string(DIGEST_TEXT_TEMPLATE)

            logger.debug("Digest renderer initialized with templates")

        except TemplateError as e:
            logger.error("Failed to initialize templates", error=str(e))
            raise RenderError(f"Template initialization failed: {e}")

    def _context(self, digest: DigestResult) -> Dict[str, Any]:
        frequency = getattr(digest.notification_frequency, "value", digest.notification_frequency)
        return {
            "subject": self.config.subject,
            "site_url": self.config.site_url,
            "frequency_label": FREQUENCY_LABELS.get(frequency, str(frequency).lower()),
            "digest": digest,
            "more_bills": digest.num_bills_with_new_testimony - len(digest.bills),
            "more_users": digest.num_users_with_new_testimony - len(digest.users),
        }

    def render_digest(self, digest: DigestResult) -> str:
        """
        Render a digest to HTML.

        Args:
            digest: Digest to render

        Returns:
            HTML string

        Raises:
            RenderError: On rendering errors
        """
        try:
            html = self.digest_template.render(**self._context(digest))

            logger.debug(
                "Digest rendered successfully",
                html_length=len(html),
                bills=len(digest.bills),
                users=len(digest.users),
            )

            return html

        except TemplateError as e:
            logger.error("Digest rendering failed", error=str(e))
            raise RenderError(f"Template rendering failed: {e}")

    def render_digest_text(self, digest: DigestResult) -> str:
        """
        Render the plain-text alternative of a digest.

        Raises:
            RenderError: On rendering errors
        """
        try:
            return self.text_template.render(**self._context(digest))
        except TemplateError as e:
            logger.error("Digest text rendering failed", error=str(e))
            raise RenderError(f"Text template rendering failed: {e}")


def create_digest_renderer(config: Optional[DigestConfig] = None) -> DigestRenderer:
    """
    Factory function to create digest renderer.

    Returns:
        Configured DigestRenderer
    """
    return DigestRenderer(config)
