"""Email sent when an order's songs are released."""

from dataclasses import dataclass
from html import escape as html_escape

from app.config import settings


@dataclass
class RenderedEmail:
    subject: str
    html_body: str
    text_body: str
    tag: str


def build_listen_url(access_token: str | None, frontend_url: str | None = None) -> str:
    base = (frontend_url or settings.frontend_url).rstrip("/")
    if not access_token:
        return base
    return f"{base}/order/{access_token}"


def _build_html(customer_name: str | None, song_title: str, listen_url: str) -> str:
    """Build the HTML email body."""
    greeting = f"Hi {html_escape(customer_name)}," if customer_name else "Hi,"
    safe_title = html_escape(song_title)
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1"></head>
<body style="margin:0;padding:0;background:#f8fafc;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;">
  <div style="max-width:480px;margin:0 auto;padding:24px 16px;">
    <div style="background:#ffffff;border:1px solid #e2e8f0;border-radius:8px;padding:28px;">
      <p style="font-size:15px;color:#0f172a;margin:0 0 12px;">{greeting}</p>
      <p style="font-size:15px;color:#334155;line-height:1.6;margin:0 0 20px;">
        Your song <strong>{safe_title}</strong> is ready. Press play and enjoy it.
      </p>
      <a href="{listen_url}"
         style="display:inline-block;background:#c2410c;color:#ffffff;padding:12px 24px;
                border-radius:6px;font-size:14px;font-weight:600;text-decoration:none;">
        Listen now
      </a>
    </div>
    <p style="font-size:11px;color:#94a3b8;text-align:center;margin:16px 0 0;">
      You received this email because you ordered a personalized song.
    </p>
  </div>
</body>
</html>"""


def _build_plain_text(customer_name: str | None, song_title: str, listen_url: str) -> str:
    greeting = f"Hi {customer_name}," if customer_name else "Hi,"
    return (
        f"{greeting}\n\n"
        f"Your song \"{song_title}\" is ready.\n\n"
        f"Listen now: {listen_url}\n"
    )


def render_song_released(
    *,
    customer_name: str | None,
    song_title: str,
    access_token: str | None,
) -> RenderedEmail:
    listen_url = build_listen_url(access_token)
    return RenderedEmail(
        subject=f"Your song \"{song_title}\" is ready",
        html_body=_build_html(customer_name, song_title, listen_url),
        text_body=_build_plain_text(customer_name, song_title, listen_url),
        tag="song-released",
    )
