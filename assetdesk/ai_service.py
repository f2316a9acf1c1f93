from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Callable

from flask import Flask, current_app
from google import genai
from google.genai import types
from sqlalchemy import or_

from .extensions import db
from .models import Asset, AssetStatus, MaintenanceRecord, Profile
from .workflow import RECORD_STATUSES

logger = logging.getLogger(__name__)

ASSET_STATUS_VALUES = [status.value for status in AssetStatus]

ASSISTANT_TOOLS = types.Tool(
    function_declarations=[
        types.FunctionDeclaration(
            name="listAssets",
            description="Lista os ativos registrados, opcionalmente filtrando por termo de busca e status.",
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "searchTerm": types.Schema(
                        type=types.Type.STRING,
                        description="Termo de busca para filtrar ativos por nome ou código de identificação.",
                    ),
                    "status": types.Schema(type=types.Type.STRING, enum=ASSET_STATUS_VALUES),
                },
            ),
        ),
        types.FunctionDeclaration(
            name="createAsset",
            description="Cria um novo ativo no sistema.",
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "name": types.Schema(type=types.Type.STRING, description="Nome do ativo."),
                    "tag_code": types.Schema(type=types.Type.STRING, description="Código de identificação do ativo."),
                    "description": types.Schema(type=types.Type.STRING),
                    "acquisition_date": types.Schema(type=types.Type.STRING, description="Data no formato YYYY-MM-DD."),
                    "supplier": types.Schema(type=types.Type.STRING),
                    "value": types.Schema(type=types.Type.NUMBER),
                    "useful_life_years": types.Schema(type=types.Type.NUMBER),
                    "status": types.Schema(type=types.Type.STRING, enum=ASSET_STATUS_VALUES),
                    "department_id": types.Schema(type=types.Type.STRING),
                    "custodian_id": types.Schema(type=types.Type.STRING),
                },
                required=["name", "tag_code"],
            ),
        ),
        types.FunctionDeclaration(
            name="listMaintenanceRecords",
            description="Lista os registros de manutenção, opcionalmente filtrando por nome do ativo e status.",
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "assetName": types.Schema(type=types.Type.STRING),
                    "status": types.Schema(type=types.Type.STRING, enum=list(RECORD_STATUSES)),
                },
            ),
        ),
    ]
)


class AssistantService:
    """Gemini chat that can look up and create assets through declared tools."""

    def __init__(self, api_key: str | None = None, *, model: str = "gemini-2.5-flash", timeout_seconds: int | None = None, client: Any = None) -> None:
        self.model = model
        self._client = client
        if self._client is None and api_key:
            http_options: dict[str, Any] = {}
            if timeout_seconds:
                # HttpOptions.timeout is in milliseconds
                http_options["timeout"] = timeout_seconds * 1000
            self._client = genai.Client(api_key=api_key, http_options=http_options)
            logger.info("Assistant client initialized | model=%s timeout=%ss", model, timeout_seconds or "default")
        elif self._client is None:
            logger.warning("Assistant API key missing. Set GEMINI_API_KEY or GENAI_API_KEY.")

    @classmethod
    def from_app(cls, app: Flask) -> "AssistantService":
        return cls(
            api_key=app.config.get("AI_API_KEY"),
            model=app.config.get("AI_MODEL", "gemini-2.5-flash"),
            timeout_seconds=app.config.get("AI_TIMEOUT_SECONDS"),
        )

    @property
    def available(self) -> bool:
        return self._client is not None

    def _client_or_raise(self) -> Any:
        if not self._client:
            raise RuntimeError("A chave de API do Gemini não está configurada.")
        return self._client

    def _generate(self, contents: list[types.Content]) -> Any:
        client = self._client_or_raise()
        config = types.GenerateContentConfig(tools=[ASSISTANT_TOOLS])
        last_err: Exception | None = None
        for attempt in range(3):
            start = time.perf_counter()
            try:
                response = client.models.generate_content(model=self.model, contents=contents, config=config)
                logger.info("Assistant success attempt=%d elapsed=%.2fs", attempt + 1, time.perf_counter() - start)
                return response
            except Exception as exc:  # pragma: no cover - runtime safety
                last_err = exc
                logger.exception(
                    "Assistant fail attempt=%d elapsed=%.2fs", attempt + 1, time.perf_counter() - start
                )
        if last_err is not None:
            raise RuntimeError(str(last_err) or "Assistant generation failed.") from last_err
        raise RuntimeError("Assistant generation failed.")

    def chat(self, prompt: str, user: Profile | None) -> dict[str, Any]:
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValueError("O prompt é obrigatório.")

        user_turn = types.Content(role="user", parts=[types.Part.from_text(text=prompt)])
        response = self._generate([user_turn])
        calls = response.function_calls or []
        if not calls:
            return {"response": (response.text or "").strip()}

        call = calls[0]
        name = call.name
        args = dict(call.args or {})
        logger.info("Assistant called %s with %s", name, args)
        result = self.run_tool(name, args, user)

        model_turn = response.candidates[0].content
        tool_turn = types.Content(
            role="tool",
            parts=[types.Part.from_function_response(name=name, response={"result": result})],
        )
        followup = self._generate([user_turn, model_turn, tool_turn])
        return {
            "response": (followup.text or "").strip(),
            "functionCalled": {"name": name, "args": args, "result": result},
        }

    def run_tool(self, name: str, args: dict[str, Any], user: Profile | None) -> Any:
        handlers: dict[str, Callable[[dict[str, Any], Profile | None], Any]] = {
            "listAssets": _list_assets,
            "createAsset": _create_asset,
            "listMaintenanceRecords": _list_maintenance_records,
        }
        handler = handlers.get(name)
        if handler is None:
            raise ValueError(f"Função desconhecida: {name}")
        return handler(args, user)


def _list_assets(args: dict[str, Any], user: Profile | None) -> list[dict[str, Any]]:
    query = Asset.query
    term = (args.get("searchTerm") or "").strip()
    if term:
        like = f"%{term}%"
        query = query.filter(or_(Asset.name.ilike(like), Asset.tag_code.ilike(like)))
    if args.get("status"):
        query = query.filter(Asset.status == args["status"])
    return [asset.to_dict() for asset in query.order_by(Asset.name.asc()).all()]


def _optional_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Identificador inválido: {value!r}") from exc


def _create_asset(args: dict[str, Any], user: Profile | None) -> dict[str, Any]:
    if user is None:
        raise PermissionError("Usuário não autenticado para criar ativos.")
    name = (args.get("name") or "").strip()
    tag_code = (args.get("tag_code") or "").strip()
    if not name or not tag_code:
        raise ValueError("name e tag_code são obrigatórios.")
    if Asset.query.filter_by(tag_code=tag_code).first():
        raise ValueError(f"Já existe um ativo com o código {tag_code}.")
    status = args.get("status") or AssetStatus.ACTIVE.value
    if status not in ASSET_STATUS_VALUES:
        raise ValueError(f"Status de ativo inválido: {status}")

    acquisition_date = None
    if args.get("acquisition_date"):
        try:
            acquisition_date = date.fromisoformat(str(args["acquisition_date"])[:10])
        except ValueError as exc:
            raise ValueError("acquisition_date deve estar no formato YYYY-MM-DD.") from exc

    asset = Asset(
        name=name,
        tag_code=tag_code,
        description=args.get("description"),
        acquisition_date=acquisition_date,
        supplier=args.get("supplier"),
        value=float(args["value"]) if args.get("value") is not None else None,
        useful_life_years=int(args["useful_life_years"]) if args.get("useful_life_years") is not None else None,
        status=status,
        department_id=_optional_int(args.get("department_id")),
        custodian_id=_optional_int(args.get("custodian_id")),
        user_id=user.id,
    )
    db.session.add(asset)
    db.session.commit()
    return asset.to_dict()


def _list_maintenance_records(args: dict[str, Any], user: Profile | None) -> list[dict[str, Any]]:
    query = MaintenanceRecord.query.join(Asset)
    asset_name = (args.get("assetName") or "").strip()
    if asset_name:
        query = query.filter(Asset.name.ilike(f"%{asset_name}%"))
    if args.get("status"):
        query = query.filter(MaintenanceRecord.status == args["status"])
    records = query.order_by(MaintenanceRecord.scheduled_date.desc()).all()
    return [record.to_dict() for record in records]


def get_assistant() -> AssistantService:
    return current_app.extensions["assistant"]
