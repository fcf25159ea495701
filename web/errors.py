"""
web/errors.py -- HTML error pages for browser routes.

install_error_pages() wraps the JSON handlers api/main.py registered: paths
under /api/ keep getting the JSON envelope, everything else gets a page.

  ValidationError -> the form it came from (signup.html / login.html),
                     status 400, with every field message
  AuthFlowError   -> error.html, status 500, sanitized message; the reason
                     and chained cause are logged with the traceback
  Exception       -> error.html, status 500, generic message; traceback logged

Only asgi.py calls this, so api/ and web/ stay independent of each other.
"""

import logging

from fastapi import FastAPI, Request

from auth.errors import AuthFlowError, ValidationError
from web.routes import render_page

logger = logging.getLogger("accessledger.web")

_FORM_TEMPLATES = {"signup": "signup.html", "login": "login.html"}


def _is_api(request: Request) -> bool:
    return request.url.path.startswith("/api/")


async def _validation_page(request: Request, exc: ValidationError):
    return render_page(
        request,
        _FORM_TEMPLATES.get(exc.kind, "login.html"),
        status_code=400,
        error=exc.message,
        errors=exc.as_dict(),
    )


async def _internal_page(request: Request, exc: AuthFlowError):
    logger.error(
        "%s on %s %s: %s",
        exc.code,
        request.method,
        request.url.path,
        getattr(exc, "reason", None) or repr(getattr(exc, "cause", exc)),
        exc_info=exc,
    )
    return render_page(request, "error.html", status_code=500, error=exc.public_message)


async def _unexpected_page(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
    return render_page(request, "error.html", status_code=500, error=AuthFlowError.public_message)


def install_error_pages(app: FastAPI) -> None:
    for exc_class, page in (
        (ValidationError, _validation_page),
        (AuthFlowError, _internal_page),
        (Exception, _unexpected_page),
    ):
        app.add_exception_handler(exc_class, _html_or_json(app.exception_handlers.get(exc_class), page))


def _html_or_json(json_handler, page_handler):
    async def handler(request: Request, exc: Exception):
        if json_handler is not None and _is_api(request):
            return await json_handler(request, exc)
        return await page_handler(request, exc)

    return handler
