from sqlmodel import Session, select
from sqlalchemy import func, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime
from typing import Optional, Tuple
from app.core.security import create_reset_token, hash_reset_token
from app.models.password_reset_token_model import PasswordResetToken
from app.models.user_model import AppUser, normalize_email
import logging
import uuid
from app.core.clock import utc_now

logger = logging.getLogger(__name__)

FIRST_USER_LOCK_KEY = 25022501


def _parse_id(value) -> Optional[str]:
    try:
        return str(uuid.UUID(str(value)))
    except (ValueError, TypeError):
        return None


class AuthCRUD:
    def __init__(self, session: Session):
        self.session = session

    def get_user_by_email(self, email: str) -> Optional[AppUser]:
        return self.session.exec(
            select(AppUser).where(AppUser.email == normalize_email(email))
        ).first()

    def get_user_by_id(self, user_id) -> Optional[AppUser]:
        key = _parse_id(user_id)
        return self.session.get(AppUser, key) if key else None

    def create_first_user_if_none(
        self,
        email: str,
        full_name: Optional[str],
        password: str,
    ) -> Optional[AppUser]:
        """
        Create ``email`` as the first account, only while the user table is empty.

        Counting and inserting happen in one transaction; on PostgreSQL an
        advisory lock serializes concurrent first logins.
        """
        try:
            if self.session.get_bind().dialect.name == "postgresql":
                self.session.connection().execute(
                    text("SELECT pg_advisory_xact_lock(:key)").bindparams(key=FIRST_USER_LOCK_KEY)
                )

            total_users = self.session.exec(select(func.count()).select_from(AppUser)).one()
            if total_users > 0:
                self.session.rollback()
                return None

            user = AppUser(
                email=normalize_email(email),
                full_name=full_name,
                hashed_password=AppUser.get_password_hash(password),
            )
            self.session.add(user)
            self.session.commit()
            self.session.refresh(user)
        except IntegrityError:
            self.session.rollback()
            logger.warning(f"First user creation lost a race for {email}")
            return None
        except SQLAlchemyError:
            self.session.rollback()
            raise

        logger.info(f"First application user created successfully. Email: {user.email}")
        return user

    @staticmethod
    def verify_password(user: AppUser, password: str) -> bool:
        return user.verify_password(password)

    def update_password(self, user: AppUser, new_password: str) -> None:
        user.update_password(new_password)
        self.session.add(user)
        self.session.commit()
        logger.info(f"Password updated for user {user.id}")

    def create_reset_token(self, user_id: str, expires_at: datetime) -> Tuple[str, str]:
        """Store a hashed reset token. Returns (token_id, raw_token)."""
        raw_token, token_hash = create_reset_token()
        token = PasswordResetToken(user_id=user_id, token_hash=token_hash, expires_at=expires_at)
        self.session.add(token)
        self.session.commit()
        self.session.refresh(token)
        return token.id, raw_token

    def _valid_token_statement(self, token_id: str, raw_token: str):
        return select(PasswordResetToken).where(
            PasswordResetToken.id == token_id,
            PasswordResetToken.token_hash == hash_reset_token(raw_token),
            PasswordResetToken.used_at.is_(None),
            PasswordResetToken.expires_at >= utc_now(),
        )

    def is_reset_token_valid(self, token_id, raw_token: str) -> bool:
        key = _parse_id(token_id)
        if not key or not raw_token or not raw_token.strip():
            return False
        return self.session.exec(self._valid_token_statement(key, raw_token)).first() is not None

    def consume_reset_token(self, token_id, raw_token: str, new_password: str) -> bool:
        """
        Use a reset token to set a new password.

        Marking the token used, changing the password and revoking the user's
        other open tokens commit together or not at all.
        """
        key = _parse_id(token_id)
        if not key or not raw_token or not raw_token.strip():
            return False

        try:
            token = self.session.exec(
                self._valid_token_statement(key, raw_token).with_for_update()
            ).first()
            if not token:
                self.session.rollback()
                return False

            now = utc_now()
            token.used_at = now
            self.session.add(token)

            user = self.session.get(AppUser, token.user_id)
            if not user:
                self.session.rollback()
                return False
            user.update_password(new_password)
            self.session.add(user)

            self.session.connection().execute(
                update(PasswordResetToken)
                .where(
                    PasswordResetToken.user_id == user.id,
                    PasswordResetToken.used_at.is_(None),
                    PasswordResetToken.id != token.id,
                )
                .values(used_at=now)
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

        logger.info(f"Password reset completed for user {user.id}")
        return True
