"""HTML shells for the control and projector surfaces."""

from __future__ import annotations

import json


ROOT_PATH_PLACEHOLDER = "__PRESENTER_TOOLS_ROOT_PATH__"


CONTROL_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Presenter Tools</title>
<style>
body { background: #111827; color: #e5e7eb; font-family: sans-serif; margin: 1rem; }
button { margin: 0.2rem; padding: 0.4rem 0.8rem; }
textarea, input { width: 100%; background: #1f2937; color: #e5e7eb; border: 1px solid #374151; }
#status { color: #fbbf24; min-height: 1.2em; }
</style>
</head>
<body>
<h1>Presenter Tools</h1>
<div>
  <button data-action="retreat">&laquo; Previous</button>
  <button data-action="advance">Next &raquo;</button>
  <button data-action="blackout">Blackout</button>
  <button data-action="clear">Clear screen</button>
  <button data-action="autoplay">Auto 5s</button>
  <button data-action="projector">Open projector</button>
</div>
<p id="status"></p>
<h2>Slides</h2>
<input id="slide-title" placeholder="Title">
<textarea id="slide-text" rows="10" placeholder="Paste text; separate slides with a blank line"></textarea>
<button data-action="slides">Project first slide</button>
<script>
const ROOT = "__PRESENTER_TOOLS_ROOT_PATH__";
const status = document.getElementById("status");
async function call(method, path, body) {
  const response = await fetch(ROOT + path, {
    method,
    headers: {"Content-Type": "application/json"},
    body: body === undefined ? undefined : JSON.stringify(body),
  });
  const data = await response.json().catch(() => ({}));
  status.textContent = response.ok ? "" : (data.detail || response.statusText);
  return data;
}
const actions = {
  advance: () => call("POST", "/api/navigation/advance"),
  retreat: () => call("POST", "/api/navigation/retreat"),
  blackout: () => call("POST", "/api/projection/blackout"),
  clear: () => call("DELETE", "/api/projection"),
  autoplay: async () => {
    const state = await call("GET", "/api/autoplay");
    await call("POST", state.running ? "/api/autoplay/stop" : "/api/autoplay/start");
  },
  projector: () => window.open(ROOT + "/projector", "PresenterProjector",
    "width=1280,height=720,menubar=no,toolbar=no,location=no,status=no"),
  slides: () => call("POST", "/api/slides/project", {
    text: document.getElementById("slide-text").value,
    title: document.getElementById("slide-title").value,
    index: 0,
  }),
};
document.querySelectorAll("button[data-action]").forEach((button) => {
  button.addEventListener("click", () => actions[button.dataset.action]());
});
</script>
</body>
</html>
"""


PROJECTOR_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Presenter Tools - Projector</title>
<style>
html, body { margin: 0; height: 100%; background: #000; color: #fff; overflow: hidden; }
#stage { position: absolute; inset: 0; display: flex; flex-direction: column;
  align-items: center; justify-content: center; text-align: center;
  background-size: cover; background-position: center; padding: 4vw; box-sizing: border-box; }
#content { font-family: Georgia, serif; line-height: 1.3; white-space: pre-wrap;
  text-shadow: 0 2px 4px rgba(0,0,0,0.9); }
#reference { margin-top: 2vh; color: #fde68a; text-shadow: 0 2px 4px rgba(0,0,0,0.9); }
</style>
</head>
<body>
<div id="stage"><p id="content"></p><p id="reference"></p></div>
<script>
const ROOT = "__PRESENTER_TOOLS_ROOT_PATH__";
const stage = document.getElementById("stage");
const content = document.getElementById("content");
const reference = document.getElementById("reference");
let applied = 0;
function apply(message) {
  if (!message || message.revision <= applied) { return; }
  applied = message.revision;
  stage.style.backgroundImage = message.backgroundImage ? `url(${message.backgroundImage})` : "none";
  const visible = !message.blackout && message.type !== "IDLE";
  content.textContent = visible ? message.content : "";
  reference.textContent = visible ? message.reference : "";
  content.style.fontSize = `${message.fontSize}px`;
  reference.style.fontSize = `${message.fontSize * 0.45}px`;
}
fetch(ROOT + "/api/projection/snapshot")
  .then((response) => response.ok ? response.json() : null)
  .then((data) => data && apply(data.message));
const source = new EventSource(ROOT + "/api/projection/stream");
source.addEventListener("projection", (event) => apply(JSON.parse(event.data)));
</script>
</body>
</html>
"""


def render_page(template: str, root_path: str) -> str:
    safe_value = json.dumps(root_path)[1:-1] if root_path else ""
    return template.replace(ROOT_PATH_PLACEHOLDER, safe_value)


__all__ = ["CONTROL_HTML", "PROJECTOR_HTML", "render_page"]
