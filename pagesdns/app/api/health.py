import cherrypy
from loguru import logger

from pagesdns.app.api import json_response


class HealthAPI:
    """Liveness and readiness checks; both answer a fixed document."""

    @cherrypy.expose
    def health(self):
        logger.debug("Health check performed")
        return json_response({"status": "OK"})

    @cherrypy.expose
    def ready(self):
        return json_response({"status": "OK"})
