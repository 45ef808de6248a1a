"""Static assets of the browser control page.

The built-in page shows the relayed camera stream and forwards keyboard
and gamepad input over ``/control/ws``. A ``static_dir`` holding its own
``index.html`` replaces the built-in page.
"""

from __future__ import annotations

import logging
from pathlib import Path

from starlette.staticfiles import StaticFiles

logger = logging.getLogger(__name__)

INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>wifi-proxy</title>
<style>
  body { margin: 0; background: #111; color: #ccc; font-family: sans-serif; text-align: center; }
  img { max-width: 100%; max-height: 85vh; background: #000; }
  #status { padding: 0.5em; font-size: 0.9em; }
</style>
</head>
<body>
<img id="stream" src="/stream" alt="camera stream">
<div id="status">connecting...</div>
<div>WASD / arrows move &middot; space stop &middot; r stand &middot; f sit &middot; j jump &middot; l light</div>
<script>
(function () {
  var status = document.getElementById("status");
  var img = document.getElementById("stream");
  var ws = null;
  var pads = {};

  img.onerror = function () {
    status.textContent = "stream unavailable, retrying...";
    setTimeout(function () { img.src = "/stream?t=" + Date.now(); }, 2000);
  };

  function send(msg) {
    if (ws && ws.readyState === WebSocket.OPEN) { ws.send(JSON.stringify(msg)); }
  }

  function connect() {
    var scheme = location.protocol === "https:" ? "wss://" : "ws://";
    ws = new WebSocket(scheme + location.host + "/control/ws");
    ws.onopen = function () { status.textContent = "control connected"; };
    ws.onclose = function () {
      status.textContent = "control disconnected, reconnecting...";
      setTimeout(connect, 1000);
    };
  }

  document.addEventListener("keydown", function (e) {
    if (e.repeat) { return; }
    send({type: "key", key: e.key, pressed: true});
  });
  document.addEventListener("keyup", function (e) {
    send({type: "key", key: e.key, pressed: false});
  });

  function pollGamepads() {
    var list = navigator.getGamepads ? navigator.getGamepads() : [];
    for (var i = 0; i < list.length; i++) {
      var gp = list[i];
      if (!gp) { continue; }
      var prev = pads[gp.index] || {axes: [], buttons: []};
      gp.axes.forEach(function (v, a) {
        var r = Math.round(v * 100) / 100;
        if (prev.axes[a] !== r) { send({type: "axis", axis: a, value: r}); prev.axes[a] = r; }
      });
      gp.buttons.forEach(function (b, n) {
        if (prev.buttons[n] !== b.pressed) {
          send({type: "button", button: n, pressed: b.pressed});
          prev.buttons[n] = b.pressed;
        }
      });
      pads[gp.index] = prev;
    }
    requestAnimationFrame(pollGamepads);
  }

  setInterval(function () { send({type: "ping"}); }, 5000);
  connect();
  requestAnimationFrame(pollGamepads);
})();
</script>
</body>
</html>
"""


def index_page(static_dir: str | None = None) -> str:
    """HTML of the landing page, preferring ``<static_dir>/index.html``."""
    if static_dir:
        custom = Path(static_dir) / "index.html"
        if custom.is_file():
            return custom.read_text(encoding="utf-8")
    return INDEX_HTML


def static_files(static_dir: str | None) -> StaticFiles | None:
    """A StaticFiles app for *static_dir*, or None when it is unusable."""
    if not static_dir:
        return None
    if not Path(static_dir).is_dir():
        logger.warning("Static directory %s does not exist, not serving /static", static_dir)
        return None
    return StaticFiles(directory=static_dir)
