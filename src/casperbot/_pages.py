"""HTML for the status page."""

from __future__ import annotations

from collections.abc import Iterable
from html import escape

from casperbot.state.events import ConnectionState
from casperbot.state.store import BotState

_STYLE = """
body {
    font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif;
    background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
    margin: 0;
    padding: 0;
    display: flex;
    justify-content: center;
    align-items: center;
    min-height: 100vh;
}
.container {
    background: white;
    padding: 40px;
    border-radius: 20px;
    box-shadow: 0 20px 60px rgba(0,0,0,0.3);
    text-align: center;
    max-width: 500px;
}
h1 { color: #764ba2; margin-bottom: 10px; }
.status { padding: 15px; border-radius: 10px; margin: 20px 0; font-weight: bold; }
.connected { background: #d4edda; color: #155724; border: 1px solid #c3e6cb; }
.disconnected { background: #f8d7da; color: #721c24; border: 1px solid #f5c6cb; }
.qr img { width: 264px; height: 264px; }
.features { text-align: left; background: #f8f9fa; padding: 20px; border-radius: 10px; margin-top: 20px; }
.feature-item { margin: 10px 0; padding: 5px; border-left: 3px solid #764ba2; }
.emoji { font-size: 60px; margin: 20px 0; }
.footer { margin-top: 20px; color: #666; font-size: 12px; }
"""

_STATUS_TEXT: dict[ConnectionState, str] = {
    ConnectionState.CONNECTED: "✅ Connected to WhatsApp",
    ConnectionState.AWAITING_SCAN: "📱 Scan the QR code with WhatsApp",
    ConnectionState.LOGGED_OUT: "🔐 Logged out, waiting to pair again...",
    ConnectionState.ERROR: "❌ Connection error",
}

REFRESH_SECONDS = 10


def status_text(state: BotState) -> str:
    return _STATUS_TEXT.get(state.connection, "⏳ Waiting for connection...")


def render_status_page(
    state: BotState,
    *,
    bot_name: str,
    version: str,
    commands: Iterable[tuple[str, str]],
) -> str:
    """Full HTML document for ``GET /``."""
    name = escape(bot_name)
    css_class = "connected" if state.is_connected else "disconnected"

    # Keep polling until paired so a fresh QR shows up without a manual reload.
    refresh = "" if state.is_connected else f'<meta http-equiv="refresh" content="{REFRESH_SECONDS}">'

    qr_block = ""
    if state.qr is not None and state.connection == ConnectionState.AWAITING_SCAN:
        qr_block = f'<div class="qr"><img src="{escape(state.qr.image)}" alt="WhatsApp pairing QR code"></div>'

    retry_block = ""
    if state.retry.value and not state.is_connected:
        retry_block = f"<p>Reconnect attempt {state.retry.value} of {state.retry.maximum}</p>"

    features = "\n".join(
        f'<div class="feature-item">• {escape(cmd)} - {escape(description)}</div>' for cmd, description in commands
    )

    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    {refresh}
    <title>{name} WhatsApp Bot</title>
    <style>{_STYLE}</style>
</head>
<body>
    <div class="container">
        <div class="emoji">🤖</div>
        <h1>{name} WhatsApp Bot</h1>
        <p>Your friendly WhatsApp assistant</p>
        <div class="status {css_class}">Status: {escape(status_text(state))}</div>
        {qr_block}
        {retry_block}
        <div class="features">
            <h3>✨ Features:</h3>
            {features}
        </div>
        <p class="footer">Version {escape(version)} | Made with ❤️ for WhatsApp</p>
    </div>
</body>
</html>
"""
