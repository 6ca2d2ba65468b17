"""Security key routes: registration ceremony plus list and delete."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from keyward.models.api import (
    BeginRegistrationRequest,
    BeginRegistrationResponse,
    FinishRegistrationRequest,
    RegistrationOptionsData,
    SecurityKeyData,
    SecurityKeyListResponse,
    SecurityKeyResponse,
)
from keyward.models.database import SecurityKey
from keyward.registration.orchestrator import RegistrationOrchestrator
from keyward.storage.repositories.security_keys import DatabaseSecurityKeyRepository
from keyward.web.auth.session import require_account
from keyward.web.dependencies import get_registration_orchestrator, get_security_key_repo

router = APIRouter(prefix="/api/account/security-keys", tags=["security-keys"])


def _key_data(key: SecurityKey) -> SecurityKeyData:
    return SecurityKeyData.model_validate(key, from_attributes=True)


@router.get("")
async def list_security_keys(
    account_id: str = Depends(require_account),
    repo: DatabaseSecurityKeyRepository = Depends(get_security_key_repo),
) -> SecurityKeyListResponse:
    keys = await repo.list_for_account(account_id)
    return SecurityKeyListResponse(data=[_key_data(k) for k in keys])


@router.post("/register")
async def begin_registration(
    body: BeginRegistrationRequest | None = None,
    account_id: str = Depends(require_account),
    orchestrator: RegistrationOrchestrator = Depends(get_registration_orchestrator),
) -> BeginRegistrationResponse:
    """Return the data needed to create a new security key."""
    result = await orchestrator.begin(account_id, body.display_name if body else None)
    return BeginRegistrationResponse(
        data=RegistrationOptionsData(token_id=result["token"], credentials=result["options"])
    )


@router.post("")
async def finish_registration(
    body: FinishRegistrationRequest,
    account_id: str = Depends(require_account),
    orchestrator: RegistrationOrchestrator = Depends(get_registration_orchestrator),
) -> SecurityKeyResponse:
    """Verify the attestation and store the new key on the account."""
    key = await orchestrator.finish(account_id, body.token_id, body.registration, body.name)
    return SecurityKeyResponse(data=_key_data(key))


@router.delete("/{key_id}", status_code=204)
async def delete_security_key(
    key_id: int,
    account_id: str = Depends(require_account),
    repo: DatabaseSecurityKeyRepository = Depends(get_security_key_repo),
) -> Response:
    if not await repo.delete(account_id, key_id):
        raise HTTPException(status_code=404, detail="Security key not found")
    return Response(status_code=204)
