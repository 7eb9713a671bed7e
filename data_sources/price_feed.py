"""
Token Price Feed
Fetches current and historical token prices from a REST price API
"""
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional
import httpx
from loguru import logger

from config import PriceFeedConfig
from errors import PriceNotFound, PriceUnavailable


class HttpPriceFeed:
    """
    REST price source for SPL tokens.

    Endpoints:
    - GET /v0/tokens/{address}          → {"priceUsd": ...}
    - GET /v0/tokens/{address}/prices   → {"prices": [{"price": ..., "timestamp": ...}, ...]}
    """

    def __init__(self, cfg: PriceFeedConfig):
        self.cfg = cfg
        self.session: Optional[httpx.AsyncClient] = None

        # Cache
        self._last_prices: Dict[str, Decimal] = {}

        logger.info(f"Initialized price feed ({cfg.base_url})")

    async def connect(self) -> bool:
        headers = {"Accept": "application/json", "User-Agent": "PositionEngine/1.0"}
        if self.cfg.api_key:
            headers["Authorization"] = f"Bearer {self.cfg.api_key}"
        self.session = httpx.AsyncClient(
            base_url=self.cfg.base_url, timeout=self.cfg.timeout_sec, headers=headers)
        logger.info("✓ Price feed session opened")
        return True

    async def disconnect(self) -> None:
        """Close connection."""
        if self.session:
            await self.session.aclose()
            self.session = None
            logger.info("Price feed session closed")

    async def _get_json(self, token_address: str, path: str, params=None) -> dict:
        if self.session is None:
            raise PriceUnavailable("price feed not connected", token_address=token_address,
                                   code="not_connected")
        try:
            resp = await self.session.get(path, params=params)
        except httpx.HTTPError as e:
            raise PriceUnavailable(f"request failed: {e}", token_address=token_address,
                                   code="network") from e
        if resp.status_code == 404:
            raise PriceNotFound("token not found", token_address=token_address, code="404")
        if resp.status_code >= 400:
            raise PriceUnavailable(f"HTTP {resp.status_code}", token_address=token_address,
                                   code=str(resp.status_code))
        try:
            return resp.json()
        except ValueError as e:
            raise PriceUnavailable("response is not JSON", token_address=token_address,
                                   code="bad_payload") from e

    @staticmethod
    def _parse_price(raw, token_address: str) -> Decimal:
        try:
            price = Decimal(str(raw))
        except (InvalidOperation, TypeError, ValueError) as e:
            raise PriceUnavailable(f"unparseable price {raw!r}", token_address=token_address,
                                   code="bad_payload") from e
        if not price.is_finite() or price <= 0:
            raise PriceUnavailable(f"non-positive price {raw!r}", token_address=token_address,
                                   code="bad_payload")
        return price

    async def get_price(self, token_address: str) -> Decimal:
        data = await self._get_json(token_address, f"/v0/tokens/{token_address}")
        if data.get("priceUsd") is None:
            raise PriceNotFound("no price in response", token_address=token_address,
                                code="missing_price")
        price = self._parse_price(data["priceUsd"], token_address)
        self._last_prices[token_address] = price
        logger.debug(f"Price {token_address}: {price}")
        return price

    async def get_historical_prices(self, token_address: str) -> List[Decimal]:
        """Price samples ordered oldest → newest."""
        data = await self._get_json(token_address, f"/v0/tokens/{token_address}/prices",
                                    params={"limit": self.cfg.history_points})
        samples = sorted(data.get("prices", []), key=lambda s: s.get("timestamp", 0))
        prices = []
        for s in samples:
            try:
                prices.append(self._parse_price(s.get("price"), token_address))
            except PriceUnavailable:
                continue
        return prices

    def last_price(self, token_address: str) -> Optional[Decimal]:
        """Get cached last price."""
        return self._last_prices.get(token_address)
