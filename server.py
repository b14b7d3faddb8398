from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field

from webtoolkit.codec import read_json, read_xml
from webtoolkit.config import STATIC_DIR, UPLOAD_DIR, ToolsConfig
from webtoolkit.errors import ToolkitError
from webtoolkit.responses import Envelope, download_static_file, error_json, error_xml, write_json, write_xml
from webtoolkit.security import is_safe_basename, random_string, safe_join
from webtoolkit.text import slugify
from webtoolkit.uploads import upload_files, upload_one_file


logger = logging.getLogger("webtoolkit.server")


class EchoPayload(BaseModel):
    foo: str
    count: int = 0


class Note(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: str
    sender: str = Field(alias="from")


class SlugRequest(BaseModel):
    text: str


def create_app(
    config: Optional[ToolsConfig] = None,
    upload_dir: Union[str, Path] = UPLOAD_DIR,
    static_dir: Union[str, Path] = STATIC_DIR,
) -> FastAPI:
    cfg = config if config is not None else ToolsConfig.from_env()
    upload_root = Path(upload_dir)
    static_root = Path(static_dir)

    app = FastAPI()
    app.state.config = cfg

    # Allow the browser app to call the API even when opened from disk
    # (file:// pages send Origin: null, which otherwise fails CORS).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ToolkitError)
    async def _toolkit_error(request: Request, exc: ToolkitError) -> Response:
        logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
        # Clients posting XML get their errors back as XML.
        if request.url.path.startswith("/api/xml/"):
            return error_xml(exc, exc.status_code)
        return error_json(exc, exc.status_code)

    @app.post("/api/upload")
    async def upload(request: Request, rename: bool = True) -> Response:
        result = await upload_files(request, upload_root, rename=rename, config=cfg)
        if result.error is not None:
            # Earlier files are already on disk; report them with the failure.
            envelope = Envelope(error=True, message=str(result.error), data=result.files)
            return write_json(result.error.status_code, envelope)
        return write_json(200, Envelope(message=f"{len(result.files)} file(s) uploaded", data=result.files))

    @app.post("/api/upload-one")
    async def upload_one(request: Request, rename: bool = True) -> Response:
        stored = await upload_one_file(request, upload_root, rename=rename, config=cfg)
        return write_json(200, Envelope(message="file uploaded", data=stored))

    @app.post("/api/json/echo")
    async def json_echo(request: Request) -> Response:
        payload = await read_json(request, EchoPayload, config=cfg)
        return write_json(200, Envelope(message="ok", data=payload), headers={"X-Request-Token": random_string(16)})

    @app.post("/api/xml/echo")
    async def xml_echo(request: Request) -> Response:
        note = await read_xml(request, Note, config=cfg)
        return write_xml(200, Envelope(message="ok", data=note.model_dump()))

    @app.post("/api/slug")
    async def make_slug(request: Request) -> Response:
        payload = await read_json(request, SlugRequest, config=cfg)
        return write_json(200, Envelope(message="ok", data={"slug": slugify(payload.text)}))

    @app.get("/api/download/{filename}")
    async def download(filename: str, name: Optional[str] = None) -> Response:
        if not is_safe_basename(filename):
            return error_json("file not found", 404)
        try:
            path = safe_join(static_root, filename)
        except ValueError:
            return error_json("file not found", 404)
        if not path.is_file():
            return error_json("file not found", 404)
        return download_static_file(filename, name or filename, directory=static_root)

    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    port = int(os.environ.get("PORT", "8010"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
