"""
Browse server: a single-page search UI over the mirrored tree.

Resources are loaded once at startup; the page queries /search as the user
types and renders every matching file.
"""
import logging
import threading
import webbrowser
from typing import Dict, List, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response

from .constants import DEFAULT_BROWSE_HOST, DEFAULT_BROWSE_PORT
from .store import search_resources

logger = logging.getLogger(__name__)

INDEX_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>cfs</title>
  <style>
    body {
      margin: 0;
      padding: 0;
      font-family: sans-serif;
    }
    #search {
      margin: 10px;
      padding: 10px;
      width: 50%;
    }
    #results {
      padding: 20px;
    }
    code {
      display: block;
      background: rgb(247, 246, 243);
      width: 100%;
      font-size: 15px;
      line-height: 1.55;
      border-radius: 12px;
      overflow-x: scroll;
    }
  </style>
</head>
<body>
  <input id="search" placeholder="Search resources ..." autofocus />
  <div id="results"></div>
  <script type="text/javascript">
    var input = document.getElementById("search");
    var lastValue = undefined;
    input.onkeyup = function (event) {
      var value = event.target.value;
      if (value === lastValue) return;
      lastValue = value;
      document.getElementById("results").innerHTML = "";
      if (!value) return;
      var params = new URLSearchParams();
      params.append("q", value);
      fetch("/search?" + params.toString()).then(function (response) {
        return response.json();
      }).then(function (resources) {
        if (input.value !== value) return;
        resources.forEach(function (resource) {
          if (input.value !== value) return;
          var path = document.createElement("p");
          path.textContent = resource.path;
          var content = document.createElement("pre");
          var contentCode = document.createElement("code");
          contentCode.textContent = resource.content;
          content.appendChild(contentCode);
          var result = document.createElement("div");
          result.id = "resource-" + resource.id;
          result.className = "result";
          result.appendChild(path);
          result.appendChild(content);
          document.getElementById("results").appendChild(result);
        });
      });
    };
  </script>
</body>
</html>
"""


def create_app(resources: List[Dict[str, str]]) -> FastAPI:
    """Build the browse app over an in-memory resource list."""
    app = FastAPI(title="cfs", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/", response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        return HTMLResponse(INDEX_HTML)

    @app.get("/search")
    async def search(q: Optional[str] = None) -> Response:
        if not q:
            return PlainTextResponse("400 - Bad Request", status_code=400)
        return JSONResponse(search_resources(resources, q))

    return app


def start_server(
    resources: List[Dict[str, str]],
    host: str = DEFAULT_BROWSE_HOST,
    port: int = DEFAULT_BROWSE_PORT,
    open_browser: bool = True,
) -> None:
    """Serve the browse UI until interrupted."""
    url = f"http://{host}:{port}/"
    print(f"Server listening on {url} ...")
    logger.info(f"Serving {len(resources)} resources on {url}")

    if open_browser:
        # Give uvicorn a moment to bind before the browser connects
        threading.Timer(1.0, webbrowser.open, args=(url,)).start()

    uvicorn.run(create_app(resources), host=host, port=port, log_level="warning")
