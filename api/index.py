from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ledger.api import create_app
from ledger.config import get_settings

app = create_app(root_path=get_settings().api_prefix)

handler = Mangum(app)
