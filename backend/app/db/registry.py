from __future__ import annotations

# Importing the model modules registers their tables on Base.metadata and
# makes string relationship targets ("Wallet", "AuthSession") resolvable.
from app.db.base import Base
from app.db.models import auth_nonce as _auth_nonce_model  # noqa: F401
from app.db.models import ephemeral_key as _ephemeral_key_model  # noqa: F401
from app.db.models import refresh_token as _refresh_token_model  # noqa: F401
from app.db.models import session as _session_model  # noqa: F401
from app.db.models import user as _user_model  # noqa: F401
from app.db.models import wallet as _wallet_model  # noqa: F401

metadata = Base.metadata
