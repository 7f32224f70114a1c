import asyncio
import logging
import os
import sys
from pathlib import Path

import aiohttp
from nicegui import Client, app, ui

# Add the project_root to the Python path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../"))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from common_utils.market_data import api_error_message
from frontend.chart_settings import load_chart_settings
from frontend.tradingview_charts import render_tradingview_page

log_dir = Path(project_root) / "logs"
log_dir.mkdir(exist_ok=True)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    handlers=[
        logging.FileHandler(log_dir / "frontend.log", mode='a'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

settings = load_chart_settings()

static_dir = Path(__file__).parent / "static"
if static_dir.is_dir():
    app.add_static_files('/static', str(static_dir))

_http_session = None


async def get_http_session() -> aiohttp.ClientSession:
    global _http_session
    if _http_session is None or _http_session.closed:
        _http_session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))
    return _http_session


async def close_http_session():
    if _http_session is not None and not _http_session.closed:
        await _http_session.close()


async def fetch_api(endpoint, method="GET", data=None, params=None, retries=3, backoff=1):
    request_kwargs = {}
    if data is not None:
        request_kwargs["json"] = data
    if params:
        request_kwargs["params"] = params

    url = f"{settings.backend_url}{endpoint}"
    logger.info(f"Calling API: {method} {url}")

    for attempt in range(retries):
        try:
            session = await get_http_session()
            async with session.request(method, url, **request_kwargs) as response:
                logger.debug(f"API call: {method} {url}, Status: {response.status}")
                if response.status >= 400:
                    try:
                        detail = api_error_message(await response.json())
                    except (aiohttp.ContentTypeError, ValueError):
                        detail = await response.text()
                    logger.error(f"API Error: {detail}")
                    return {"error": {"code": "API_ERROR", "message": detail}, "status": response.status}
                if response.content_type == 'application/json':
                    return await response.json()
                return {"error": {"code": "BAD_CONTENT", "message": f"Unexpected content type {response.content_type}"},
                        "status": response.status}
        except aiohttp.ClientConnectorError as e:
            logger.error(f"API connection failed: {str(e)}")
            if attempt < retries - 1:
                await asyncio.sleep(backoff * (2 ** attempt))
                continue
            return {"error": {"code": "CONNECTION_FAILED", "message": "Connection failed"}, "status": 503}
    return {"error": {"code": "RETRIES_EXCEEDED", "message": "Max retries exceeded"}, "status": 429}


@ui.page('/')
async def chart_page(client: Client):
    await client.connected()
    ui.query('body').style(f'background-color: {settings.background_color}')
    instruments = {symbol: symbol for symbol in settings.watchlist}
    await render_tradingview_page(fetch_api, settings, instruments)


app.on_shutdown(close_http_session)

if __name__ in {"__main__", "__mp_main__"}:
    ui.run(
        title="Chart Workstation",
        port=int(os.getenv("CHART_PORT", "8084")),
        reload=False,
        dark=True,
        uvicorn_logging_level="info",
        show=False,
    )
