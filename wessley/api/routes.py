from __future__ import annotations

import asyncio
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from fastapi.responses import RedirectResponse

from wessley.api.schemas import (
    MAX_QUERY_LENGTH,
    BenchChatRequest,
    ChatMessageRequest,
    ChatRequest,
    CheckoutRequest,
    GenerateTitleRequest,
    IngestRequest,
    NetlistifyRequest,
    RagIngestRequest,
    RagQueryRequest,
    ScraperStatusUpdate,
    SearchRequest,
    WaitlistRequest,
)
from wessley.logging import get_logger, sanitize_error_message
from wessley.service import ingest as ingest_rules
from wessley.service import prompts
from wessley.service.auth import AuthContext
from wessley.service.billing import (
    PAID_TIERS,
    PRICING_INFO,
    BillingNotConfiguredError,
    BillingService,
    get_price_id,
)
from wessley.service.errors import NetlistifyError, UpstreamServiceError
from wessley.service.llm import LLMError, LLMNotConfiguredError
from wessley.service.rate_limit import enforce_rate_limit, get_rate_limit_identifier
from wessley.service.runtime import get_runtime
from wessley.service.scene_components import get_scene_components_for_prompt
from wessley.service.scene_events import extract_scene_events
from wessley.service.vehicles import derive_systems, load_vehicle_graph, mock_graph
from wessley.storage.errors import StoreError
from wessley.storage.models import Profile, is_demo_workspace, to_json

logger = get_logger(__name__)

router = APIRouter(prefix="/api")
auth_router = APIRouter(prefix="/auth")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NETLISTIFY_VERSION = "1.0.0"


def _http_error(
    code: str,
    message: str,
    status_code: int,
    details: Optional[dict | list | str] = None,
    **extra: Any,
) -> HTTPException:
    payload: Dict[str, Any] = {"error": code, "message": message, **extra}
    if details is not None:
        payload["details"] = details
    return HTTPException(status_code=status_code, detail=payload)


# Auth and plan guards -----------------------------------------------------


async def get_optional_user(
    authorization: Optional[str] = Header(None),
) -> Optional[AuthContext]:
    return get_runtime().auth.authenticate(authorization)


def _require_user(principal: Optional[AuthContext]) -> AuthContext:
    if not principal:
        raise _http_error("unauthorized", "Authentication required", status_code=401)
    return principal


async def get_user(
    principal: Optional[AuthContext] = Depends(get_optional_user),
) -> AuthContext:
    return _require_user(principal)


async def get_admin_user(principal: AuthContext = Depends(get_user)) -> AuthContext:
    profile = get_runtime().store.get_profile(principal.user_id)
    if not profile or not profile.is_admin:
        raise _http_error("forbidden", "Admin access required", status_code=403)
    return principal


def _require_subscription(runtime, principal: AuthContext, message: str) -> Profile:
    profile = runtime.store.get_profile(principal.user_id)
    if not profile or not profile.has_active_subscription:
        raise _http_error(
            "subscription_required", message, status_code=402, upgrade_url="/pricing"
        )
    return profile


def _guard_demo_capable(
    runtime, principal: Optional[AuthContext], workspace_id: Optional[str], message: str
) -> None:
    """Auth and plan checks for routes that the public demo workspace may call."""
    if is_demo_workspace(workspace_id):
        return
    _require_subscription(runtime, _require_user(principal), message)


# Chat ---------------------------------------------------------------------


@router.post("/chat")
async def chat(body: ChatRequest):
    runtime = get_runtime()
    settings = runtime.settings
    messages = [{"role": "system", "content": prompts.build_electrical_prompt(body.context)}]
    messages += [turn.model_dump() for turn in body.messages]
    try:
        completion = await runtime.llm.complete(
            messages, model=settings.chat_model, max_tokens=500, temperature=0.1
        )
    except (LLMError, LLMNotConfiguredError) as exc:
        logger.warning("chat_fallback_to_mock", error_type=type(exc).__name__)
        return {
            "error": "Chat temporarily unavailable. Using mock response.",
            "response": prompts.mock_response(),
        }
    return {"response": completion.content, "tokens_used": completion.tokens_used}


@router.post("/chat/bench")
async def chat_bench(body: BenchChatRequest):
    runtime = get_runtime()
    settings = runtime.settings
    if not body.user_message:
        raise _http_error("invalid_input", "User message is required", status_code=400)
    if not runtime.llm.is_configured:
        logger.error("chat_bench_llm_not_configured")
        raise _http_error("configuration_error", "Configuration error", status_code=500)

    history = body.conversation_history
    phase = prompts.choose_onboarding_phase(body.is_first_message, history)
    scene_components = ""
    if phase == prompts.ONBOARDING_PROBLEMS:
        scene_components = get_scene_components_for_prompt(settings.scene_components_path)
    system_prompt = prompts.build_onboarding_prompt(
        phase, body.user_message, history, scene_components
    )

    messages = [{"role": "system", "content": system_prompt}]
    messages += [
        {"role": m.get("role"), "content": m.get("content")}
        for m in history
        if m.get("role") != "system"
    ]
    try:
        completion = await runtime.llm.complete(
            messages, model=settings.onboarding_model, max_tokens=1500
        )
    except LLMError:
        raise _http_error("llm_error", "Failed to generate response", status_code=500)

    assistant_message, scene_events = extract_scene_events(
        completion.content or "No response generated"
    )
    onboarding_complete = phase == prompts.ONBOARDING_NICKNAME
    vehicle_info = None
    if onboarding_complete and len(history) >= 2:
        first_user = next((m for m in history if m.get("role") == "user"), {})
        vehicle_info = {
            "vehicleModel": first_user.get("content") or "",
            "nickname": body.user_message,
            "extractedFromGPT": True,
        }
    return {
        "success": True,
        "assistantMessage": assistant_message,
        "sceneEvents": scene_events,
        "tokensUsed": completion.tokens_used,
        "messageType": phase,
        "onboardingComplete": onboarding_complete,
        "vehicleInfo": vehicle_info,
    }


@router.post("/chat/generate-title")
async def generate_title(body: GenerateTitleRequest):
    runtime = get_runtime()
    if not body.user_message:
        raise _http_error("invalid_input", "User message is required", status_code=400)
    if not runtime.llm.is_configured:
        raise _http_error("configuration_error", "Configuration error", status_code=500)
    try:
        completion = await runtime.llm.complete(
            prompts.build_title_messages(body.user_message, body.assistant_message),
            model=runtime.settings.title_model,
            max_tokens=25,
            temperature=0.7,
        )
    except LLMError:
        raise _http_error("llm_error", "Failed to generate title", status_code=500)
    title = completion.content.strip() or body.user_message[:50]
    return {"title": title, "success": True}


@router.post("/chat/messages")
async def chat_messages(
    body: ChatMessageRequest,
    principal: Optional[AuthContext] = Depends(get_optional_user),
):
    runtime = get_runtime()
    settings = runtime.settings
    if not body.chat_id or not body.user_message:
        raise _http_error(
            "invalid_input", "Chat ID and user message are required", status_code=400
        )
    principal = _require_user(principal)
    chat = runtime.store.get_chat(body.chat_id, user_id=principal.user_id)
    if not chat:
        raise _http_error("not_found", "Chat not found", status_code=404)
    if not runtime.llm.is_configured:
        raise _http_error("configuration_error", "Configuration error", status_code=500)

    model = settings.messages_model
    user_record = runtime.store.create_message(
        chat.id, "user", body.user_message, user_id=principal.user_id, ai_model=model
    )
    vehicle = body.vehicle.model_dump() if body.vehicle else None
    messages = [{"role": "system", "content": prompts.build_restoration_prompt(vehicle)}]
    messages += [
        {"role": m.role, "content": m.content}
        for m in runtime.store.list_messages(chat.id, limit=20)
    ]
    try:
        completion = await runtime.llm.complete(
            messages, model=model, max_tokens=1500, temperature=0.7
        )
    except LLMError:
        raise _http_error("llm_error", "Failed to generate response", status_code=500)

    assistant_record = runtime.store.create_message(
        chat.id,
        "assistant",
        completion.content or "No response generated",
        ai_model=model,
        ai_tokens_used=completion.tokens_used or None,
    )
    runtime.store.update_chat(chat.id, last_message_at=datetime.utcnow())
    return {
        "success": True,
        "userMessage": to_json(user_record),
        "assistantMessage": to_json(assistant_record),
        "tokensUsed": completion.tokens_used or None,
    }


# Ingestion ----------------------------------------------------------------


def _ingest_upstream_error(exc: UpstreamServiceError) -> HTTPException:
    mapped = ingest_rules.INGEST_ERROR_MAP.get(exc.error_code or "")
    if mapped is None and exc.status_code == 413:
        mapped = ingest_rules.INGEST_ERROR_MAP["file_too_large"]
    if mapped:
        code, status_code, message = mapped
        return _http_error(code, message, status_code=status_code)
    if exc.status_code == 503:
        return _http_error(
            "queue_full", "Processing queue is full, try again later", status_code=503
        )
    return _http_error(
        "service_error", sanitize_error_message(exc.message), status_code=500
    )


@router.post("/ingest", status_code=202)
async def create_ingestion(
    body: IngestRequest,
    request: Request,
    response: Response,
    principal: AuthContext = Depends(get_user),
):
    runtime = get_runtime()
    _require_subscription(
        runtime, principal, "Document ingestion requires an active subscription."
    )
    await enforce_rate_limit(
        runtime.limiters.get("ingest"),
        get_rate_limit_identifier(request, principal.user_id),
        response,
    )

    if not body.pdf_url:
        raise _http_error("invalid_input", "pdf_url is required", status_code=400)
    vehicle = body.vehicle
    if vehicle is None:
        raise _http_error("invalid_input", "vehicle object is required", status_code=400)
    if not vehicle.make or not vehicle.model or not vehicle.year:
        raise _http_error(
            "invalid_input",
            "vehicle.make, vehicle.model, and vehicle.year are required",
            status_code=400,
        )

    file_url: Optional[str] = body.pdf_url
    file_content: Optional[str] = None
    if ingest_rules.is_data_uri(body.pdf_url):
        file_url = None
        file_content = ingest_rules.extract_base64(body.pdf_url)
        size = ingest_rules.decoded_size(file_content)
        if size > ingest_rules.MAX_FILE_SIZE_BYTES:
            raise _http_error(
                "file_too_large",
                f"Max file size is 50MB. Your file is {ingest_rules.size_in_mb(size)}MB.",
                status_code=413,
            )

    vehicle_data = vehicle.model_dump()
    try:
        job = await runtime.services.ingestion.create_job(
            file_name=ingest_rules.vehicle_file_name(vehicle_data),
            file_type="pdf",
            file_url=file_url,
            file_content=file_content,
            metadata=ingest_rules.upload_metadata(principal.user_id, {"vehicle": vehicle_data}),
        )
    except UpstreamServiceError as exc:
        raise _ingest_upstream_error(exc)

    logger.info("ingestion_job_created", job_id=job.get("job_id"), user_id=principal.user_id)
    return {
        "job_id": job.get("job_id"),
        "status": "queued",
        "estimated_time": ingest_rules.ESTIMATED_PROCESSING_SECONDS,
    }


@router.get("/ingest/{job_id}")
async def get_ingestion(job_id: str, principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    try:
        job = await runtime.services.ingestion.get_job(job_id)
    except UpstreamServiceError as exc:
        if exc.error_code == "not_found":
            raise _http_error("not_found", "Ingestion job not found", status_code=404)
        raise _http_error(
            "service_error", sanitize_error_message(exc.message), status_code=500
        )
    return ingest_rules.job_status_body(job)


@router.post("/rag/ingest")
async def rag_ingest(
    body: RagIngestRequest,
    request: Request,
    response: Response,
    principal: AuthContext = Depends(get_user),
):
    runtime = get_runtime()
    _require_subscription(
        runtime, principal, "Document ingestion requires an active subscription."
    )
    await enforce_rate_limit(
        runtime.limiters.get("ingest"),
        get_rate_limit_identifier(request, principal.user_id),
        response,
    )

    if not body.file_content:
        raise _http_error(
            "invalid_input",
            "file_content is required and must be a base64 string",
            status_code=400,
        )
    if not body.file_name:
        raise _http_error("invalid_input", "file_name is required", status_code=400)
    if body.file_type not in ingest_rules.RAG_FILE_TYPES:
        raise _http_error(
            "invalid_input",
            "file_type is required and must be one of: pdf, image, schematic",
            status_code=400,
        )
    if not ingest_rules.has_allowed_extension(body.file_name):
        raise _http_error(
            "invalid_input",
            "Invalid file extension",
            status_code=400,
            allowed=list(ingest_rules.ALLOWED_EXTENSIONS),
        )
    size = ingest_rules.decoded_size(body.file_content)
    if size > ingest_rules.MAX_FILE_SIZE_BYTES:
        raise _http_error(
            "file_too_large",
            f"Maximum file size is 50MB. Your file is {ingest_rules.size_in_mb(size)}MB.",
            status_code=413,
        )
    if not ingest_rules.is_valid_base64(body.file_content):
        raise _http_error("invalid_input", "Invalid base64 encoding", status_code=400)

    try:
        job = await runtime.services.ingestion.create_job(
            file_name=body.file_name,
            file_type=body.file_type,
            file_content=body.file_content,
            vehicle_id=body.vehicle_id,
            metadata=ingest_rules.upload_metadata(principal.user_id, body.metadata),
        )
    except UpstreamServiceError as exc:
        if exc.status_code in (404, 413, 415):
            raise _http_error(
                exc.error_code or "service_error",
                sanitize_error_message(exc.message),
                status_code=exc.status_code,
            )
        raise _http_error(
            "service_error", sanitize_error_message(exc.message), status_code=500
        )

    return {
        "job_id": job.get("job_id"),
        "status": job.get("status"),
        "created_at": job.get("created_at"),
        "message": "Ingestion job created. Use GET /api/rag/ingest?job_id=<id> to check status.",
    }


@router.get("/rag/ingest")
async def rag_ingest_status(
    job_id: Optional[str] = Query(None),
    principal: AuthContext = Depends(get_user),
):
    runtime = get_runtime()
    if not job_id:
        raise _http_error("invalid_input", "job_id query parameter is required", status_code=400)
    try:
        job = await runtime.services.ingestion.get_job(job_id)
    except UpstreamServiceError as exc:
        if exc.error_code == "not_found":
            raise _http_error("not_found", "Ingestion job not found", status_code=404)
        raise _http_error(
            "service_error", sanitize_error_message(exc.message), status_code=500
        )
    return {
        "job_id": job.get("job_id"),
        "status": job.get("status"),
        "progress": job.get("progress"),
        "created_at": job.get("created_at"),
        "completed_at": job.get("completed_at"),
        "result": job.get("result"),
        "error": job.get("error"),
    }


# RAG query ----------------------------------------------------------------


async def _graph_context(graph, vehicle_id: str, system_name: str) -> Dict[str, Any]:
    components = await graph.get_system_components(vehicle_id, system_name)

    async def _connections(component: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            related = await graph.get_related_components(vehicle_id, component.get("id"), 1)
        except UpstreamServiceError:
            return []
        return related.get("connections") or []

    batches = await asyncio.gather(*(_connections(c) for c in components[:3]))
    connections = [conn for batch in batches for conn in batch]
    return {
        "components": [
            {
                "id": c.get("id"),
                "type": c.get("type"),
                "name": c.get("name"),
                "position": c.get("position"),
            }
            for c in components
        ],
        "connections": [
            {
                "from_component": conn.get("from_component"),
                "to_component": conn.get("to_component"),
                "wire": {
                    "id": (conn.get("wire") or {}).get("id"),
                    "color": (conn.get("wire") or {}).get("color"),
                    "gauge": (conn.get("wire") or {}).get("gauge"),
                },
            }
            for conn in connections
        ],
    }


@router.post("/rag/query")
async def rag_query(
    body: RagQueryRequest,
    request: Request,
    response: Response,
    principal: Optional[AuthContext] = Depends(get_optional_user),
):
    started = time.perf_counter()
    runtime = get_runtime()
    _guard_demo_capable(
        runtime, principal, body.workspace_id, "RAG query features require an active subscription."
    )
    await enforce_rate_limit(
        runtime.limiters.get("chat"),
        get_rate_limit_identifier(request, principal.user_id if principal else None),
        response,
    )

    if not body.query or not isinstance(body.query, str):
        raise _http_error("invalid_input", "Query is required and must be a string", status_code=400)
    if len(body.query) > MAX_QUERY_LENGTH:
        raise _http_error(
            "invalid_input", "Query too long. Maximum 2000 characters.", status_code=400
        )

    semantic = await runtime.services.semantic.search(
        body.query,
        vehicle_id=body.vehicle_id,
        collection=body.collection,
        limit=body.limit or 5,
        threshold=body.threshold,
    )
    result: Dict[str, Any] = {"results": semantic.get("results") or []}

    if body.include_graph and body.vehicle_id and body.system_name:
        try:
            result["graphContext"] = await _graph_context(
                runtime.services.graph, body.vehicle_id, body.system_name
            )
        except UpstreamServiceError as exc:
            logger.warning(
                "rag_graph_context_failed",
                vehicle_id=body.vehicle_id,
                system_name=body.system_name,
                status_code=exc.status_code,
            )

    result["processingTimeMs"] = int((time.perf_counter() - started) * 1000)
    return result


@router.get("/rag/query")
async def rag_query_get():
    raise _http_error("method_not_allowed", "Method not allowed. Use POST.", status_code=405)


# Netlistify ---------------------------------------------------------------


@router.post("/netlistify")
async def netlistify(
    body: NetlistifyRequest,
    request: Request,
    response: Response,
    principal: Optional[AuthContext] = Depends(get_optional_user),
):
    runtime = get_runtime()
    _guard_demo_capable(
        runtime,
        principal,
        body.workspace_id,
        "Schematic tools require an active subscription.",
    )
    identifier = get_rate_limit_identifier(request, principal.user_id if principal else None)
    await enforce_rate_limit(runtime.limiters.get("netlistify"), identifier, response)

    params = body.params()
    client = runtime.netlistify
    try:
        if body.action == "generate":
            return await client.generate_schematic(params)
        if body.action == "analyze":
            if not params.get("image"):
                raise _http_error(
                    "invalid_input", "Image required for analysis", status_code=400
                )
            return await client.analyze_image(params["image"])
        if body.action == "templates":
            return {"templates": await client.get_templates()}
        if body.action == "health":
            return {"healthy": await client.health_check(), "service": "netlistify"}
    except NetlistifyError as exc:
        raise _http_error(
            exc.error_code or "netlistify_error",
            sanitize_error_message(exc.message),
            status_code=exc.status_code,
        )
    raise _http_error(
        "invalid_input",
        "Invalid action. Action must be one of: generate, analyze, templates, health",
        status_code=400,
    )


@router.get("/netlistify")
async def netlistify_status(action: str = Query("status")):
    client = get_runtime().netlistify
    if action not in ("templates", "health", "status"):
        raise _http_error(
            "invalid_input",
            "Invalid action. Action must be one of: templates, health, status",
            status_code=400,
        )
    try:
        if action == "templates":
            return {"templates": await client.get_templates()}
        healthy = await client.health_check()
    except NetlistifyError as exc:
        logger.warning("netlistify_status_failed", status_code=exc.status_code)
        raise _http_error(
            "service_unavailable",
            "Service unavailable",
            status_code=503,
            service="netlistify",
            healthy=False,
        )
    return {"service": "netlistify", "healthy": healthy, "version": NETLISTIFY_VERSION}


# Vehicles -----------------------------------------------------------------


def _owned_vehicle(runtime, vehicle_id: str, principal: AuthContext):
    vehicle = runtime.store.get_vehicle(vehicle_id)
    workspace = runtime.store.get_workspace(vehicle.workspace_id) if vehicle else None
    if not vehicle or not workspace:
        raise _http_error("not_found", "Vehicle not found", status_code=404)
    if workspace.user_id != principal.user_id:
        raise _http_error("forbidden", "Access denied", status_code=403)
    return vehicle, workspace


@router.get("/vehicle/{vehicle_id}")
async def get_vehicle(vehicle_id: str, principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    _require_subscription(
        runtime, principal, "Vehicle data access requires an active subscription."
    )
    vehicle, workspace = _owned_vehicle(runtime, vehicle_id, principal)
    return {
        "id": vehicle.id,
        "make": vehicle.make,
        "model": vehicle.model,
        "year": vehicle.year,
        "created_at": vehicle.created_at.isoformat(),
        "systems": derive_systems(vehicle),
        "vin": vehicle.vin,
        "engine_type": vehicle.engine_type,
        "transmission_type": vehicle.transmission_type,
        "fuel_type": vehicle.fuel_type,
        "trim_level": vehicle.trim_level,
        "electrical_voltage": vehicle.electrical_voltage,
        "workspace_id": workspace.id,
        "workspace_name": workspace.name,
    }


@router.get("/vehicle/{vehicle_id}/graph")
async def get_vehicle_graph(vehicle_id: str, principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    vehicle, workspace = _owned_vehicle(runtime, vehicle_id, principal)
    try:
        return await load_vehicle_graph(runtime.services.graph, workspace.vehicle_signature)
    except UpstreamServiceError as exc:
        logger.error(
            "vehicle_graph_failed",
            vehicle_id=vehicle_id,
            status_code=exc.status_code,
            message=exc.message,
        )
        if exc.is_timeout:
            raise _http_error(
                "graph_timeout", "Graph query timed out", status_code=503, partial=False
            )
        return mock_graph(vehicle)


# Billing ------------------------------------------------------------------


def _load_profile(runtime, user_id: str) -> Profile:
    try:
        profile = runtime.store.get_profile(user_id)
    except StoreError as exc:
        logger.error("profile_lookup_failed", user_id=user_id, error=str(exc))
        profile = None
    if profile is None:
        raise _http_error("internal_error", "Failed to fetch user profile.", status_code=500)
    return profile


def _billing_unavailable() -> HTTPException:
    return _http_error(
        "service_unavailable",
        "Stripe is not configured. Please contact support.",
        status_code=503,
    )


@router.post("/stripe/checkout")
async def stripe_checkout(body: CheckoutRequest, principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    billing: BillingService = runtime.billing
    if not body.tier or body.tier not in PAID_TIERS:
        raise _http_error(
            "invalid_input",
            "Invalid subscription tier. Please select a paid plan.",
            status_code=400,
        )
    price_id = get_price_id(body.tier, runtime.settings)
    if not price_id:
        raise _http_error(
            "invalid_input",
            "This subscription tier is not available. Please contact support.",
            status_code=400,
        )
    profile = _load_profile(runtime, principal.user_id)

    try:
        customer_id = profile.stripe_customer_id
        if not customer_id:
            customer_id = await asyncio.to_thread(
                billing.create_customer,
                profile.email or principal.email,
                profile.full_name or profile.display_name,
                principal.user_id,
            )
            runtime.store.update_profile(principal.user_id, stripe_customer_id=customer_id)
        url = await asyncio.to_thread(
            billing.create_checkout_session,
            customer_id,
            price_id,
            principal.user_id,
            body.tier,
        )
    except BillingNotConfiguredError:
        raise _billing_unavailable()
    except stripe.StripeError as exc:
        logger.error(
            "stripe_checkout_failed", user_id=principal.user_id, error_type=type(exc).__name__
        )
        raise _http_error(
            "internal_error",
            "Failed to create checkout session. Please try again.",
            status_code=500,
        )
    return {"url": url}


@router.post("/stripe/portal")
async def stripe_portal(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    profile = _load_profile(runtime, principal.user_id)
    if not profile.stripe_customer_id:
        raise _http_error(
            "not_found", "No subscription found. Please subscribe first.", status_code=404
        )
    try:
        url = await asyncio.to_thread(
            runtime.billing.create_portal_session, profile.stripe_customer_id
        )
    except BillingNotConfiguredError:
        raise _billing_unavailable()
    except stripe.StripeError as exc:
        logger.error(
            "stripe_portal_failed", user_id=principal.user_id, error_type=type(exc).__name__
        )
        raise _http_error(
            "internal_error",
            "Failed to create portal session. Please try again.",
            status_code=500,
        )
    return {"url": url}


@router.get("/stripe/pricing")
async def stripe_pricing():
    return PRICING_INFO


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
):
    runtime = get_runtime()
    payload = await request.body()
    if not stripe_signature:
        raise _http_error("invalid_input", "Missing signature", status_code=400)
    secret = runtime.settings.stripe_webhook_secret
    if not secret:
        logger.error("stripe_webhook_secret_missing")
        raise _http_error("configuration_error", "Webhook not configured", status_code=500)
    try:
        event = BillingService.construct_event(payload, stripe_signature, secret)
    except (stripe.SignatureVerificationError, ValueError) as exc:
        logger.warning("stripe_webhook_invalid_signature", error_type=type(exc).__name__)
        raise _http_error("invalid_signature", "Invalid signature", status_code=400)

    try:
        return await runtime.webhooks.process(event)
    except Exception as exc:
        logger.exception(
            "stripe_webhook_handler_failed",
            exc_info=exc,
            event_id=event.get("id"),
            event_type=event.get("type"),
        )
        raise _http_error("webhook_failed", "Webhook handler failed", status_code=500)


# Waitlist -----------------------------------------------------------------


@router.post("/waitlist")
async def join_waitlist(body: WaitlistRequest, request: Request, response: Response):
    runtime = get_runtime()
    await enforce_rate_limit(
        runtime.limiters.get("waitlist"), get_rate_limit_identifier(request), response
    )
    if not body.email:
        raise _http_error("invalid_input", "Email is required", status_code=400)
    email = body.email.strip()
    if not _EMAIL_RE.match(email):
        raise _http_error("invalid_input", "Invalid email address", status_code=400)
    data = await runtime.waitlist.subscribe(email)
    return {"success": True, "message": "Successfully subscribed to waitlist", "data": data}


# Search -------------------------------------------------------------------


@router.post("/search")
async def search(body: SearchRequest):
    if not body.query or not isinstance(body.query, str):
        raise _http_error("invalid_input", "Query is required", status_code=400)
    return await get_runtime().search.search(body.query, body.limit, body.types)


# Admin --------------------------------------------------------------------


@router.get("/admin/scraper/status")
async def scraper_status(principal: AuthContext = Depends(get_admin_user)):
    return get_runtime().scraper_status.snapshot()


@router.post("/admin/scraper/status")
async def update_scraper_status(
    body: ScraperStatusUpdate, principal: AuthContext = Depends(get_admin_user)
):
    status = get_runtime().scraper_status.update(body.model_dump(exclude_none=True))
    logger.info("scraper_status_updated", phase=status["phase"], user_id=principal.user_id)
    return {"success": True, "status": status}


# OAuth callback -----------------------------------------------------------


def _safe_next(next_path: Optional[str]) -> str:
    # Only same-origin relative paths; "//host" would leave the site
    if not next_path or not next_path.startswith("/") or next_path.startswith("//"):
        return "/chat"
    return next_path


def _code_verifier(request: Request) -> Optional[str]:
    for name, value in request.cookies.items():
        if name.endswith("-auth-token-code-verifier"):
            return value
    return None


@auth_router.get("/callback")
async def auth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    next_path: Optional[str] = Query("/chat", alias="next"),
):
    origin = str(request.base_url).rstrip("/")
    if not code:
        logger.warning("auth_callback_missing_code")
        return RedirectResponse(f"{origin}/auth/auth-code-error", status_code=307)

    session = await get_runtime().auth.exchange_code(code, _code_verifier(request))
    if not session:
        return RedirectResponse(f"{origin}/auth/auth-code-error", status_code=307)

    redirect = RedirectResponse(f"{origin}{_safe_next(next_path)}", status_code=307)
    secure = request.url.scheme == "https"
    if session.get("access_token"):
        redirect.set_cookie(
            "sb-access-token",
            session["access_token"],
            max_age=session.get("expires_in"),
            httponly=True,
            secure=secure,
            samesite="lax",
        )
    if session.get("refresh_token"):
        redirect.set_cookie(
            "sb-refresh-token",
            session["refresh_token"],
            httponly=True,
            secure=secure,
            samesite="lax",
        )
    return redirect
