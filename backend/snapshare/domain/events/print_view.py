import base64
import html
from datetime import datetime

from snapshare.domain.events.db_models import Event

PRINT_INSTRUCTIONS = (
    "Open your phone camera and point it at the code.",
    "Tap the link that appears to open the event page.",
    "Choose photos from your gallery or take new ones.",
    "Press upload. Photos appear once the organizer approves them.",
)


def format_event_date(value: datetime) -> str:
    return f"{value.strftime('%A, %B')} {value.day}, {value.year}"


def render_print_page(event: Event, qr_png: bytes, *, print_delay_ms: int = 500) -> str:
    """Standalone poster page; the browser print dialog opens shortly after load."""
    title = html.escape(event.title)
    data_url = "data:image/png;base64," + base64.b64encode(qr_png).decode("ascii")
    location_line = (
        f'<p class="meta">{html.escape(event.location)}</p>' if event.location else ""
    )
    steps = "".join(f"<li>{html.escape(step)}</li>" for step in PRINT_INSTRUCTIONS)
    return f"""<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8">
    <title>{title} - QR Code</title>
    <style>
      body {{ font-family: Arial, sans-serif; margin: 0; color: #0f172a; }}
      .poster {{ max-width: 640px; margin: 32px auto; text-align: center; padding: 24px; }}
      h1 {{ font-size: 32px; margin: 0 0 8px; }}
      .meta {{ color: #475569; margin: 4px 0; font-size: 16px; }}
      .qr {{ margin: 24px auto; width: 300px; height: 300px; }}
      ol {{ text-align: left; display: inline-block; font-size: 15px; }}
      .limit {{ font-weight: 600; margin-top: 12px; }}
      @media print {{ .poster {{ margin: 0 auto; }} }}
    </style>
  </head>
  <body>
    <div class="poster">
      <h1>{title}</h1>
      <p class="meta">{html.escape(format_event_date(event.event_date))}</p>
      {location_line}
      <img class="qr" src="{data_url}" alt="QR code for {title}" width="300" height="300">
      <h2>Share your photos</h2>
      <ol>{steps}</ol>
      <p class="limit">Up to {int(event.max_photos)} photos can be shared for this event.</p>
    </div>
    <script>
      window.addEventListener("load", function () {{
        setTimeout(function () {{ window.print(); }}, {int(print_delay_ms)});
      }});
    </script>
  </body>
</html>
"""
