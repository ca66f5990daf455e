from auth_provider.main import create_app
from auth_provider.platform.config import Settings

app = create_app(Settings())
