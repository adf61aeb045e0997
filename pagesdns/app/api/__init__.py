import json

import cherrypy


def json_response(payload, status: int = 200) -> bytes:
    cherrypy.response.status = status
    cherrypy.response.headers["Content-Type"] = "application/json"
    return json.dumps(payload, default=str).encode()


def read_json_body() -> dict:
    """Decode the request body as a JSON object; raise ValueError otherwise."""
    raw = cherrypy.request.body.read() if cherrypy.request.body else b""
    if not raw:
        return {}
    data = json.loads(raw.decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data
