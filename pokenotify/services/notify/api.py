"""HTTP surface for producers: schedule, edit, cancel pokes and read their trail."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from pokenotify.common.config import settings
from pokenotify.common.errors import NotFoundError, StoreError
from pokenotify.common.logging import logger
from pokenotify.common.metrics import metrics_response, pokes_created_total
from pokenotify.services.notify.schemas import ArchivedPoke, IdsRequest, Poke, PokeWriteRequest, Record
from pokenotify.services.notify.service import NotifyService
from pokenotify.services.notify.store import PokeStore


def create_app(store: PokeStore, service: NotifyService | None = None) -> FastAPI:
    """Build the API over `store`; when `service` is given its poll loop runs with the app."""

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        dispatcher_task = asyncio.create_task(service.run_forever()) if service is not None else None
        yield
        if dispatcher_task is not None:
            dispatcher_task.cancel()

    app = FastAPI(title="Poke Notify Service", lifespan=lifespan)

    @app.exception_handler(NotFoundError)
    async def not_found(_: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StoreError)
    async def store_unavailable(_: Request, exc: StoreError):
        logger.error("store error op=%s ids=%s error=%s", exc.op, exc.ids, exc.cause)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.post("/pokes", response_model=Poke, status_code=201)
    def create_poke(req: PokeWriteRequest):
        """Schedule a poke; the store assigns its id."""

        poke = store.create(Poke(**req.model_dump()))
        pokes_created_total.labels(service=settings.service_name, tunnel=poke.tunnel.value).inc()
        return poke

    @app.get("/pokes/{poke_id}", response_model=Poke)
    def get_poke(poke_id: str):
        return store.get(poke_id)[0]

    @app.put("/pokes/{poke_id}", response_model=Poke)
    def update_poke(poke_id: str, req: PokeWriteRequest):
        """Replace the whole poke document."""

        return store.update(Poke(id=poke_id, **req.model_dump()))

    @app.post("/pokes/cancel", status_code=204)
    def cancel_pokes(req: IdsRequest):
        """Cancel queued pokes; nothing is cancelled if any id is unknown."""

        store.delete(*req.ids)
        return Response(status_code=204)

    @app.get("/pokes/{poke_id}/records", response_model=list[Record])
    def get_records(poke_id: str):
        return store.get_record(poke_id)

    @app.get("/archived/{poke_id}", response_model=ArchivedPoke)
    def get_archived(poke_id: str):
        return store.get_archived(poke_id)[0]

    @app.post("/archived/purge", status_code=204)
    def purge_archived(req: IdsRequest):
        store.delete_archived(*req.ids)
        return Response(status_code=204)

    @app.get("/health")
    def health():
        """Container health check endpoint."""

        return {"ok": True}

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    return app
