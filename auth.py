"""Google sign-in (Authlib) and the session → User lookup every API route starts with."""

import logging
from datetime import datetime

from authlib.integrations.flask_client import OAuth
from flask import session

from models import User, db

logger = logging.getLogger(__name__)

oauth = OAuth()

GOOGLE_METADATA_URL = 'https://accounts.google.com/.well-known/openid-configuration'


class Unauthenticated(Exception):
    """No signed-in user for this request."""


def init_oauth(app):
    oauth.init_app(app)
    oauth.register(
        name='google',
        client_id=app.config['GOOGLE_CLIENT_ID'],
        client_secret=app.config['GOOGLE_CLIENT_SECRET'],
        server_metadata_url=GOOGLE_METADATA_URL,
        client_kwargs={'scope': 'openid email profile'},
    )


def get_or_create_user(userinfo: dict) -> User:
    """Sync the identity provider's profile into our User row.

    First sign-in creates the row; later ones refresh name, email and
    picture. Profile fields from onboarding are never touched here.
    """
    google_id = userinfo.get('sub')
    if not google_id:
        raise Unauthenticated('Identity provider returned no subject')

    user = User.query.filter_by(google_id=google_id).first()
    if user is None:
        user = User(google_id=google_id, email=userinfo.get('email', ''))
        db.session.add(user)
        logger.info('New user %s', user.email)

    user.email = userinfo.get('email') or user.email
    user.name = userinfo.get('name') or user.name or 'User'
    user.picture = userinfo.get('picture') or user.picture or ''
    user.last_login = datetime.utcnow()
    db.session.commit()
    return user


def current_user() -> User | None:
    user_id = session.get('user_id')
    if user_id:
        return db.session.get(User, user_id)
    return None


def require_user() -> User:
    user = current_user()
    if user is None:
        raise Unauthenticated('Unauthorized')
    return user
