"""HTTP entry point for on-demand collection cycles."""

from __future__ import annotations

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .errors import AuthError
from .logging_conf import configure_logging
from .orchestrator import Orchestrator, verify_token

_bearer = HTTPBearer(auto_error=False)


class ScrapeResponse(BaseModel):
    success: int
    duplicates: int
    errors: int


def create_app(orchestrator: Orchestrator, api_token: str | None = None) -> FastAPI:
    """Build the trigger app; ``api_token`` falls back to the global config value."""

    log = configure_logging().bind(component="api")
    expected = api_token or orchestrator.global_config.api_token
    app = FastAPI(title="airdrop-crawler", docs_url=None, redoc_url=None)

    def require_token(
        credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    ) -> None:
        provided = credentials.credentials if credentials else None
        try:
            verify_token(provided, expected)
        except AuthError as exc:
            log.warning("scrape_unauthorized", reason=str(exc))
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized",
                headers={"WWW-Authenticate": "Bearer"},
            ) from exc

    @app.post("/api/scrape", response_model=ScrapeResponse, dependencies=[Depends(require_token)])
    def scrape() -> ScrapeResponse:
        # Sync route: the cycle blocks, so FastAPI runs it on a worker thread.
        log.info("scrape_triggered")
        summary = orchestrator.run_cycle()
        return ScrapeResponse(**summary.as_dict())

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


__all__ = ["ScrapeResponse", "create_app"]
