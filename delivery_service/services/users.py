import logging

from sqlalchemy.exc import IntegrityError

from ..db import db
from ..models import Role, User, Wallet

logger = logging.getLogger(__name__)


def ensure_user(subject: str, role: Role, display_name: str | None = None) -> User:
    """Return the user for an identity-provider subject, provisioning it on first sight.

    Delivery partners get their wallet row in the same commit.
    """
    user = User.query.filter_by(subject=subject).first()
    if user:
        return user

    user = User(subject=subject, role=role, display_name=display_name)
    db.session.add(user)
    if role == Role.DELIVERY_PARTNER:
        user.wallet = Wallet(balance=0)
    try:
        db.session.commit()
    except IntegrityError:
        # provisioned concurrently by another request
        db.session.rollback()
        return User.query.filter_by(subject=subject).one()
    logger.info("provisioned %s user %s", role.value, subject)
    return user


def get_wallet(user_id: int) -> Wallet | None:
    return Wallet.query.filter_by(user_id=user_id).first()
