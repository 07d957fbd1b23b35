"""
auth/cors.py -- Immutable CORS policy and its Starlette middleware wiring.

CorsPolicy is built once from Settings at startup. The same value drives both
the gatekeeper's "is this origin allowed" check and Starlette's CORSMiddleware,
so the two can never disagree.

CORS is enforced by the browser, not here: a request from an unlisted origin
is still processed, its response just carries no Access-Control-Allow-Origin
header and the browser refuses to expose it to the calling page.

Open question kept deliberately narrow: PATCH and HEAD are not in
ALLOWED_METHODS. No route needs them cross-origin today.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import Settings

ALLOWED_METHODS: tuple[str, ...] = ("GET", "POST", "PUT", "DELETE", "OPTIONS")


@dataclass(frozen=True)
class CorsPolicy:
    allowed_origins: frozenset[str]
    allowed_methods: tuple[str, ...] = ALLOWED_METHODS
    allowed_headers: tuple[str, ...] = ("*",)
    allow_credentials: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> CorsPolicy:
        # Settings has already rejected an empty or wildcard origin list.
        return cls(allowed_origins=frozenset(settings.allowed_origins))

    def allows_origin(self, origin: str | None) -> bool:
        return origin is not None and origin in self.allowed_origins

    def install(self, app: FastAPI) -> None:
        """Register CORSMiddleware on the app with this policy."""
        app.add_middleware(
            CORSMiddleware,
            allow_origins=sorted(self.allowed_origins),
            allow_methods=list(self.allowed_methods),
            allow_headers=list(self.allowed_headers),
            allow_credentials=self.allow_credentials,
            max_age=3600,
        )
