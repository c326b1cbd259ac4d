import asyncio
import logging
import sys
import os

# Add current directory to path so we can import backend modules
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from typing import Any, Dict, Optional
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config import CONFIG
from engine import advance
from models import WorldState
from reporting import OverlayMode, district_summary, overlay_value
from world import create_city

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="CitySim Backend", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------- Request Models ----------
# No range constraints: the engine clamps whatever it is given.
# Policy fields accept camelCase or snake_case; unknown fields are rejected.

class ServiceBudgetsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    police: Optional[float] = None
    fire: Optional[float] = None
    health: Optional[float] = None
    education: Optional[float] = None
    transit: Optional[float] = None
    sanitation: Optional[float] = None
    water: Optional[float] = None

class PolicyUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    property_tax_rate: Optional[float] = Field(None, alias="propertyTaxRate")
    sales_tax_rate: Optional[float] = Field(None, alias="salesTaxRate")
    enforcement_intensity: Optional[float] = Field(None, alias="enforcementIntensity")
    service_budgets: Optional[ServiceBudgetsUpdate] = Field(None, alias="serviceBudgets")
    maintenance_budget: Optional[float] = Field(None, alias="maintenanceBudget")


def parse_seed(value: Any) -> Optional[int]:
    """
    Seed from a SETUP message: an integer or a decimal string, or None.

    Raises:
        ValueError: for any other value
    """
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip()
        digits = text[1:] if text.startswith("-") else text
        if digits.isdecimal():
            return int(text)
    raise ValueError(f"Invalid seed: {value!r}")


class SimulationManager:
    def __init__(self):
        self.world: Optional[WorldState] = None
        self.seed: int = CONFIG.grid.default_seed
        self.overlay = OverlayMode(CONFIG.server.default_overlay)
        self.is_running = False
        self.active_websocket = None
        self.run_task: Optional[asyncio.Task] = None
        # One tick at a time
        self.tick_lock = asyncio.Lock()

    def initialize(self, seed: Optional[int] = None):
        if seed is not None:
            self.seed = seed
        logger.info(f"Initializing city with seed {self.seed}...")
        self.world = create_city(self.seed)
        logger.info("City initialized")

    def start(self) -> bool:
        """Start the run loop unless one is already running."""
        if not self.world:
            self.initialize()
        if self.run_task is not None and not self.run_task.done():
            return False
        self.is_running = True
        self.run_task = asyncio.create_task(self.run_loop())
        return True

    async def stop(self):
        """Stop the run loop and wait until its task has finished."""
        self.is_running = False
        task, self.run_task = self.run_task, None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Simulation loop stopped")

    async def step(self) -> Dict[str, Any]:
        if not self.world:
            self.initialize()
        async with self.tick_lock:
            advance(self.world.city, self.world.districts)
        return self.snapshot()

    def snapshot(self) -> Dict[str, Any]:
        city = self.world.city
        return {
            "type": "STATE",
            "month": city.month,
            "cash": city.cash,
            "debt": city.debt,
            "citywide": {
                "trust": city.citywide.trust,
                "unemployment": city.citywide.unemployment,
            },
            "policy": city.policy.to_dict(),
            "report": city.last_report.to_dict(),
            "overlay": self.overlay.value,
            "grid": {"width": self.world.grid_width, "height": self.world.grid_height},
            "cells": [
                {"id": d.id, "x": d.x, "y": d.y, "value": overlay_value(d, self.overlay)}
                for d in self.world.districts
            ],
        }

    def update_policy(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        if not self.world:
            self.initialize()
        if not isinstance(config_data, dict):
            return {"type": "ERROR", "error": "config must be an object"}
        try:
            update = PolicyUpdate.model_validate(config_data)
        except ValidationError as e:
            logger.warning(f"Rejected policy update: {e}")
            first = e.errors()[0]
            field_path = ".".join(str(part) for part in first["loc"])
            return {"type": "ERROR", "error": f"Invalid policy field {field_path}: {first['msg']}"}
        self.world.city.policy.apply_overrides(update.model_dump(exclude_none=True))
        return {"type": "CONFIG_APPLIED", "policy": self.world.city.policy.to_dict()}

    def set_overlay(self, mode: str) -> Dict[str, Any]:
        try:
            self.overlay = OverlayMode(mode)
        except ValueError:
            return {"type": "ERROR", "error": f"Unknown overlay: {mode}"}
        return self.snapshot()

    def inspect(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not self.world:
            self.initialize()
        if "id" in data:
            district = self.world.get_district(str(data["id"]))
        else:
            try:
                district = self.world.find_district(int(data.get("x", -1)), int(data.get("y", -1)))
            except (TypeError, ValueError):
                district = None
        if district is None:
            return {"type": "ERROR", "error": "No such district"}
        return {
            "type": "DISTRICT",
            "id": district.id,
            "summary": district_summary(district),
            "district": district.to_dict(),
        }

    async def run_loop(self):
        if not self.world:
            logger.warning("Attempted to run loop without a city. Waiting for SETUP.")
            return

        logger.info("Starting simulation loop")
        interval = CONFIG.server.tick_interval_seconds
        try:
            while self.is_running and self.active_websocket:
                start_time = asyncio.get_event_loop().time()

                state = await self.step()
                await self.active_websocket.send_json(state)

                # Throttle
                elapsed = asyncio.get_event_loop().time() - start_time
                await asyncio.sleep(max(0.05, interval - elapsed))

        except Exception as e:
            logger.error(f"Simulation loop error: {e}")
            self.is_running = False
            if self.active_websocket:
                await self.active_websocket.send_json({"type": "ERROR", "error": str(e)})

manager = SimulationManager()

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    manager.active_websocket = websocket
    logger.info("WebSocket connected")

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"type": "ERROR", "error": "Message is not valid JSON"})
                continue
            if not isinstance(data, dict):
                await websocket.send_json({"type": "ERROR", "error": "Message must be a JSON object"})
                continue
            command = data.get("command")

            if command == "SETUP":
                try:
                    seed = parse_seed(data.get("seed"))
                except ValueError as e:
                    await websocket.send_json({"type": "ERROR", "error": str(e)})
                    continue
                await manager.stop()
                manager.initialize(seed)
                await websocket.send_json({"type": "SETUP_COMPLETE", "state": manager.snapshot()})
            elif command == "STEP":
                if manager.is_running:
                    # The run loop already ticks on its own cadence
                    continue
                await websocket.send_json(await manager.step())
            elif command == "START":
                manager.start()
            elif command == "STOP":
                await manager.stop()
            elif command == "RESET":
                await manager.stop()
                async with manager.tick_lock:
                    manager.initialize()
                manager.overlay = OverlayMode(CONFIG.server.default_overlay)
                await websocket.send_json({"type": "RESET", "state": manager.snapshot()})
            elif command == "CONFIG":
                await websocket.send_json(manager.update_policy(data.get("config", {})))
            elif command == "OVERLAY":
                if not manager.world:
                    manager.initialize()
                await websocket.send_json(manager.set_overlay(data.get("mode", "")))
            elif command == "INSPECT":
                await websocket.send_json(manager.inspect(data))
            else:
                await websocket.send_json({"type": "ERROR", "error": f"Unknown command: {command}"})

    except WebSocketDisconnect:
        await manager.stop()
        manager.active_websocket = None
        logger.info("Client disconnected")
