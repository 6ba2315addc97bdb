"""
OAuth State Broker
CSRF-bound state for the DigiLocker handshake (Tier 2).

The state value is the primary key of its row. Consuming it is a DELETE in
the same transaction as the tier upgrade, so of two callbacks racing on one
state only the one whose delete removes the row can upgrade the tier.
"""
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.errors import ApiError, StateMismatch, VerificationFailed
from bandhan_auth.models.session import OAuthState
from bandhan_auth.services.audit_service import AuditTrail
from bandhan_auth.services.digilocker_service import DigiLockerService
from bandhan_auth.services.token_service import mint_access_token
from bandhan_auth.services.vault import CredentialVault
from bandhan_auth.services.verification import Tier, TierUpgradeResult, VerificationStateMachine
from bandhan_auth.utils.clock import Clock, utcnow

STATE_BYTES = 32


@dataclass
class AuthorizationRequest:
    authorization_url: str
    state: str
    expires_in_seconds: int


@dataclass
class CallbackResult:
    upgrade: TierUpgradeResult
    access_token: str


def vault_context(user_id) -> str:
    """Associated data binding a sealed DigiLocker token to its owner"""
    return f"digilocker:{user_id}"


class OAuthStateBroker:
    def __init__(
        self,
        db: AsyncSession,
        client: DigiLockerService,
        vault: CredentialVault,
        audit: AuditTrail,
        clock: Clock = utcnow,
        state_ttl: timedelta = timedelta(minutes=15),
    ):
        self.db = db
        self.client = client
        self.vault = vault
        self.audit = audit
        self.clock = clock
        self.state_ttl = state_ttl
        self.state_machine = VerificationStateMachine(db, audit, clock)

    async def initiate(self, user_id: UUID) -> AuthorizationRequest:
        """Persist a fresh state for user_id and build the authorization URL"""
        state = secrets.token_urlsafe(STATE_BYTES)
        now = self.clock()
        self.db.add(OAuthState(id=state, user_id=user_id, expires_at=now + self.state_ttl, created_at=now))
        self.audit.record(
            event_type="DIGILOCKER_INITIATED",
            action="INIT_OAUTH",
            user_id=user_id,
            entity_id=user_id,
        )
        await self.db.commit()
        logger.info(f"DigiLocker flow initiated for user {user_id}")
        return AuthorizationRequest(
            authorization_url=self.client.get_authorization_url(state),
            state=state,
            expires_in_seconds=int(self.state_ttl.total_seconds()),
        )

    async def _fail(self, error: ApiError, event_type: str, reason: str, user_id: Optional[UUID] = None):
        await self.db.rollback()
        self.audit.record(
            event_type=event_type,
            action="OAUTH_CALLBACK",
            user_id=user_id,
            entity_id=user_id,
            metadata={"reason": reason},
        )
        await self.db.commit()
        raise error

    async def handle_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        provider_error: Optional[str] = None,
    ) -> CallbackResult:
        """
        Validate state, exchange code, seal the token and upgrade to Silver.
        Any failure leaves the tier untouched.
        """
        if provider_error:
            await self._fail(VerificationFailed(), "DIGILOCKER_VERIFICATION_FAILED", "provider_error")

        if not state:
            await self._fail(StateMismatch(), "DIGILOCKER_STATE_MISMATCH", "missing_state")

        stored = (await self.db.execute(
            select(OAuthState).where(OAuthState.id == state)
        )).scalar_one_or_none()
        if stored is None:
            await self._fail(StateMismatch(), "DIGILOCKER_STATE_MISMATCH", "unknown_state")
        user_id = stored.user_id
        if stored.expires_at <= self.clock():
            await self._fail(StateMismatch(), "DIGILOCKER_STATE_MISMATCH", "expired_state", user_id)

        if not code:
            await self._fail(VerificationFailed(), "DIGILOCKER_VERIFICATION_FAILED", "missing_code", user_id)

        try:
            access_token = await self.client.exchange_code_for_token(code)
            sealed = await self.vault.seal(access_token, context=vault_context(user_id))
            has_identity = await self.client.has_verified_identity(access_token)
        except VerificationFailed:
            await self._fail(VerificationFailed(), "DIGILOCKER_VERIFICATION_FAILED", "token_exchange", user_id)

        if not has_identity:
            await self._fail(VerificationFailed(), "DIGILOCKER_VERIFICATION_FAILED", "no_profile", user_id)

        # Single-use: whoever deletes the row owns the upgrade
        consumed = await self.db.execute(
            delete(OAuthState)
            .where(OAuthState.id == state)
            .execution_options(synchronize_session=False)
        )
        if consumed.rowcount != 1:
            await self._fail(StateMismatch(), "DIGILOCKER_STATE_MISMATCH", "state_replayed", user_id)

        upgrade = await self.state_machine.complete_tier(
            user_id,
            Tier.SILVER,
            values={
                "digilocker_token": sealed.ciphertext,
                "digilocker_token_iv": sealed.iv,
                "digilocker_token_tag": sealed.auth_tag,
            },
            metadata={"method": "DIGILOCKER_OAUTH"},
        )
        await self.db.commit()
        return CallbackResult(upgrade=upgrade, access_token=mint_access_token(upgrade.user))
