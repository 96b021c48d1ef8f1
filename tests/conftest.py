import os

# Never reach a real Redis from tests
os.environ.pop("REDIS_URL", None)
os.environ.pop("REDIS_URL_DEFAULT", None)

from tests.fixtures.channel_fixtures import *  # noqa: E402, F403
