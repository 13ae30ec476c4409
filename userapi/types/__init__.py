from sqlalchemy.orm import declarative_base

Base = declarative_base()

from userapi.types.user import User
from userapi.types.oauthclient import OAuthClient
from userapi.types.oauthtoken import OAuthToken

field_maps = [User.fields, OAuthClient.fields, OAuthToken.fields]
