# -*- coding: utf-8 -*-
"""
Request context for the trust API.

Every request carries an id, taken from a well-formed ``X-Request-ID`` header
or freshly generated, and echoed back on the response. Collaborators that
send lifecycle notifications name themselves in ``X-Trust-Collaborator``;
the name is stamped on log lines and on the ledger metadata of the events
they deliver, so a trust change can be traced to the system that caused it.
"""

import time
import uuid
from typing import Optional

from flask import Flask, Response, g, request

REQUEST_ID_HEADER = 'X-Request-ID'
COLLABORATOR_HEADER = 'X-Trust-Collaborator'
COLLABORATOR_MAX_LENGTH = 64


def _incoming_request_id() -> str:
    try:
        return str(uuid.UUID(request.headers.get(REQUEST_ID_HEADER, '')))
    except ValueError:
        return str(uuid.uuid4())


def _incoming_collaborator() -> Optional[str]:
    name = (request.headers.get(COLLABORATOR_HEADER) or '').strip()
    return name[:COLLABORATOR_MAX_LENGTH] or None


def _open_request():
    g.request_id = _incoming_request_id()
    g.collaborator = _incoming_collaborator()
    g.request_started = time.time()


def _close_request(response: Response) -> Response:
    request_id = get_request_id()
    if request_id:
        response.headers[REQUEST_ID_HEADER] = request_id
    return response


def get_request_id() -> Optional[str]:
    return g.get('request_id')


def get_collaborator() -> Optional[str]:
    return g.get('collaborator')


def elapsed_ms() -> Optional[float]:
    """Milliseconds since the current request was opened."""
    started = g.get('request_started')
    if started is None:
        return None
    return round((time.time() - started) * 1000, 2)


def get_request_context() -> dict:
    """Fields stamped on every log line written while serving a request."""
    context = {
        'request_id': get_request_id(),
        'method': request.method,
        'path': request.path,
    }
    collaborator = get_collaborator()
    if collaborator:
        context['collaborator'] = collaborator
    return context


def init_request_context(app: Flask):
    """Open and close the request context around every request."""
    app.before_request(_open_request)
    app.after_request(_close_request)
