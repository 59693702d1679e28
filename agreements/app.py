# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""HTTP API for the milestone escrow platform (FastAPI).

Endpoints for the agreement lifecycle: create, deposit, complete milestones,
release, dispute, resolve, terminate, plus read-only queries.

Caller identity arrives in the request body. Authenticating that identity
belongs to whatever fronts this service; the core only compares identities.
"""

import logging
from typing import Annotated

from fastapi import FastAPI, HTTPException, Path, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from protocol import MAX_STORED_INT, MILESTONE_COUNT, PROTOCOL_VERSION, AgreementState
from agreements.errors import AgreementError
from agreements.service import AgreementService

logger = logging.getLogger(__name__)

AgreementId = Annotated[int, Path(le=MAX_STORED_INT)]


# --- Request/Response models ---

class MilestoneSpec(BaseModel):
    description: str
    payment_share: int = Field(0, ge=0)

class CreateAgreementRequest(BaseModel):
    id: int = Field(..., gt=0, le=MAX_STORED_INT)
    caller: str
    provider: str
    total_cost: int
    duration: int = Field(..., ge=0, le=MAX_STORED_INT)
    milestones: list[MilestoneSpec]

class DepositRequest(BaseModel):
    caller: str
    amount: int

class CallerRequest(BaseModel):
    caller: str

class DisputeRequest(BaseModel):
    caller: str
    reason: str

class ResolveRequest(BaseModel):
    caller: str
    resolution: str
    client_refund_pct: int = Field(..., ge=0, le=100)


def create_app(service: AgreementService | None = None) -> FastAPI:
    """Create FastAPI app with an injected agreement service."""

    app = FastAPI(title="Milestone Escrow", version=str(PROTOCOL_VERSION))
    _service = service or AgreementService()
    app.state.service = _service

    @app.exception_handler(AgreementError)
    async def agreement_error_handler(request: Request, exc: AgreementError):
        logger.warning("%s on %s: %s", exc.kind.value, request.url.path, exc.message)
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": {"code": "bad_request", "message": str(exc)}})

    # --- Writes ---

    @app.post("/agreements")
    async def create_agreement(req: CreateAgreementRequest):
        agreement = _service.create_agreement(
            req.caller, req.id, req.provider, req.total_cost, req.duration,
            [m.model_dump() for m in req.milestones],
        )
        return agreement.to_dict()

    @app.post("/agreements/{agreement_id}/deposit")
    async def deposit(agreement_id: AgreementId, req: DepositRequest):
        return _service.deposit_payment(req.caller, agreement_id, req.amount)

    @app.post("/agreements/{agreement_id}/milestones/{index}/complete")
    async def complete_milestone(agreement_id: AgreementId, index: int, req: CallerRequest):
        return _service.mark_milestone_complete(req.caller, agreement_id, index).to_dict()

    @app.post("/agreements/{agreement_id}/release")
    async def release(agreement_id: AgreementId, req: CallerRequest):
        return _service.release_escrowed_payment(req.caller, agreement_id)

    @app.post("/agreements/{agreement_id}/dispute")
    async def dispute(agreement_id: AgreementId, req: DisputeRequest):
        return _service.initiate_dispute(req.caller, agreement_id, req.reason).to_dict()

    @app.post("/agreements/{agreement_id}/resolve")
    async def resolve(agreement_id: AgreementId, req: ResolveRequest):
        return _service.resolve_dispute_claim(
            req.caller, agreement_id, req.resolution, req.client_refund_pct,
        )

    @app.post("/agreements/{agreement_id}/terminate")
    async def terminate(agreement_id: AgreementId, req: CallerRequest):
        return _service.terminate_agreement(req.caller, agreement_id)

    # --- Reads ---

    @app.get("/agreements")
    async def list_agreements(status: str | None = None, limit: int = 50):
        if status is not None:
            try:
                AgreementState(status)
            except ValueError:
                raise HTTPException(400, f"Unknown status: {status}")
        limit = max(1, min(limit, 200))
        return {"agreements": [a.to_dict() for a in _service.list_agreements(status, limit)]}

    @app.get("/agreements/{agreement_id}")
    async def get_agreement(agreement_id: AgreementId):
        agreement = _service.get_agreement(agreement_id)
        if agreement is None:
            raise HTTPException(404, "Agreement not found")
        return agreement.to_dict()

    @app.get("/agreements/{agreement_id}/escrow")
    async def get_escrow(agreement_id: AgreementId):
        escrow = _service.get_escrow(agreement_id)
        if escrow is None:
            return {"agreement_id": agreement_id, "balance": "0"}
        return escrow

    @app.get("/agreements/{agreement_id}/dispute")
    async def get_dispute(agreement_id: AgreementId):
        dispute = _service.get_dispute(agreement_id)
        if dispute is None:
            raise HTTPException(404, "No dispute for this agreement")
        return dispute.to_dict()

    @app.get("/agreements/{agreement_id}/events")
    async def get_events(agreement_id: AgreementId):
        return {"events": [e.to_dict() for e in _service.get_events(agreement_id)]}

    @app.get("/stats")
    async def get_stats():
        return _service.stats()

    @app.get("/platform_info")
    async def platform_info():
        return {
            "protocol_version": PROTOCOL_VERSION,
            "milestone_count": MILESTONE_COUNT,
            "dispute_window": _service.dispute_window,
            "admin_configured": bool(_service.admin),
        }

    return app
