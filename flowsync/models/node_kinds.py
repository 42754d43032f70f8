"""Catalogue of editor node kinds and how each one translates to the engine.

Every kind has a typed config record (a pydantic model) that reads the editor's
opaque ``config`` map, fills documented defaults and renders the parameter
shape the engine node type expects via ``to_parameters()``. Kinds without a
dedicated record use ``PassthroughConfig`` and keep their config unchanged.

Output port semantics per kind:

* ``conditional`` / ``if``: ``"true"`` is port 0, ``"false"`` is port 1.
* ``filter``: ``"kept"`` is port 0, ``"discarded"`` is port 1.
* ``switch``: ``"output<N>"`` or ``"<N>"`` is port N. A switch has one port
  per rule, plus the fallback port when ``fallbackOutput`` points past them.
* every other kind has a single output, port 0.

Input semantics: ``merge`` takes ``"input<N>"`` or ``"<N>"`` as input N (0 or 1);
every other kind has a single input 0.

Numbered handles are 0-based everywhere, and ``-`` or ``_`` may separate the
prefix from the number (``"input-0"``). A number past the last port of the kind
is unrecognised and falls back to port 0.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

NOOP_TYPE = "n8n-nodes-base.noOp"


class NodeConfig(BaseModel):
    """Base of all per-kind config records; accepts camelCase or snake_case keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_parameters(self) -> Dict[str, Any]:
        raise NotImplementedError

    def output_count(self) -> Optional[int]:
        """Number of output ports this config opens, when the kind's ports depend on it."""
        return None


class PassthroughConfig(NodeConfig):
    """Config of kinds without a dedicated record; forwarded unchanged."""
    model_config = ConfigDict(extra="allow")

    def to_parameters(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class ManualTriggerConfig(NodeConfig):
    def to_parameters(self) -> Dict[str, Any]:
        return {}


class WebhookConfig(NodeConfig):
    method: str = "POST"
    path: str = "webhook"
    auth: str = "none"
    response_mode: str = "onReceived"
    response_code: int = 200
    response_data: str = "allEntries"
    allowed_origins: str = "*"
    raw_body: bool = False
    binary_property_name: str = "data"
    ignore_bots: bool = False
    ip_whitelist: str = ""

    def to_parameters(self) -> Dict[str, Any]:
        return {
            "httpMethod": self.method.upper(),
            "path": self.path,
            "authentication": self.auth,
            "responseMode": self.response_mode,
            "responseCode": self.response_code,
            "responseData": self.response_data,
            "options": {
                "allowedOrigins": self.allowed_origins,
                "rawBody": self.raw_body,
                "binaryPropertyName": self.binary_property_name,
                "ignoreBots": self.ignore_bots,
                "ipWhitelist": self.ip_whitelist,
            },
        }


class ScheduleTriggerConfig(NodeConfig):
    cron_expression: str = "0 * * * *"
    timezone: str = "UTC"

    def to_parameters(self) -> Dict[str, Any]:
        return {
            "rule": {
                "interval": [{"field": "cronExpression", "expression": self.cron_expression}],
            },
            "timezone": self.timezone,
        }


class HttpRequestConfig(NodeConfig):
    url: str = ""
    method: str = "GET"
    authentication: str = "none"
    headers: Optional[Dict[str, str]] = None
    body: Optional[Any] = None
    body_content_type: str = "json"
    timeout: int = 10000
    follow_redirects: bool = True
    max_redirects: int = 21
    full_response: bool = False
    never_error: bool = False
    proxy: str = ""

    def _json_body(self) -> str:
        if self.body is None:
            return "{}"
        if isinstance(self.body, str):
            return self.body
        return json.dumps(self.body, sort_keys=True)

    def to_parameters(self) -> Dict[str, Any]:
        headers = self.headers or {}
        return {
            "url": self.url,
            "method": self.method.upper(),
            "authentication": self.authentication,
            "sendHeaders": bool(headers),
            "headerParameters": {
                "parameters": [{"name": name, "value": value} for name, value in headers.items()],
            },
            "sendBody": self.body is not None,
            "contentType": self.body_content_type,
            "specifyBody": "json",
            "jsonBody": self._json_body(),
            "options": {
                "timeout": self.timeout,
                "redirect": {
                    "redirect": {
                        "followRedirects": self.follow_redirects,
                        "maxRedirects": self.max_redirects,
                    },
                },
                "response": {
                    "response": {
                        "fullResponse": self.full_response,
                        "neverError": self.never_error,
                    },
                },
                "proxy": self.proxy,
            },
        }


class CodeConfig(NodeConfig):
    mode: str = "runOnceForAllItems"
    js_code: str = Field(
        "// Your code here\nreturn items;",
        validation_alias=AliasChoices("jsCode", "js_code", "expression", "code"),
    )
    python_code: str = ""
    language: str = "javaScript"

    def to_parameters(self) -> Dict[str, Any]:
        params = {"mode": self.mode, "language": self.language}
        if self.language == "python":
            params["pythonCode"] = self.python_code
        else:
            params["jsCode"] = self.js_code
        return params


class ConditionalConfig(NodeConfig):
    value1: str = "={{$json}}"
    operation: str = "equal"
    value2: str = Field("", validation_alias=AliasChoices("value2", "condition"))
    combine_operation: str = "all"

    def to_parameters(self) -> Dict[str, Any]:
        return {
            "conditions": {
                "boolean": [
                    {"value1": self.value1, "operation": self.operation, "value2": self.value2},
                ],
            },
            "combineOperation": self.combine_operation,
        }


class SwitchRule(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    value: Any = ""
    operation: str = "equal"


class SwitchConfig(NodeConfig):
    data_type: str = "string"
    value1: str = "={{$json}}"
    rules: List[SwitchRule] = Field(default_factory=list)
    fallback_output: int = -1

    def to_parameters(self) -> Dict[str, Any]:
        return {
            "dataType": self.data_type,
            "value1": self.value1,
            "rules": {
                "rules": [
                    {"operation": rule.operation, "value2": rule.value, "output": index}
                    for index, rule in enumerate(self.rules)
                ],
            },
            "fallbackOutput": self.fallback_output,
        }

    def output_count(self) -> int:
        count = len(self.rules)
        if self.fallback_output >= 0:
            # The fallback adds at most one port after the rules
            count = max(count, min(self.fallback_output, count) + 1)
        return max(count, 1)


class FilterCondition(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    field: str = "={{$json}}"
    operation: str = "equal"
    value: Any = ""


class FilterConfig(NodeConfig):
    conditions: List[FilterCondition] = Field(default_factory=list)
    combine_conditions: str = "all"
    case_sensitive: bool = True
    loose_type_validation: bool = False

    def to_parameters(self) -> Dict[str, Any]:
        return {
            "conditions": {
                "boolean": [
                    {"value1": c.field, "operation": c.operation, "value2": c.value}
                    for c in self.conditions
                ],
            },
            "combineConditions": self.combine_conditions,
            "options": {
                "caseSensitive": self.case_sensitive,
                "looseTypeValidation": self.loose_type_validation,
            },
        }


class SetField(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    name: str = ""
    value: Any = ""
    type: str = "string"


class SetConfig(NodeConfig):
    mode: str = "manual"
    keep_only_set: bool = True
    fields: List[SetField] = Field(default_factory=list)

    def to_parameters(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "keepOnlySet": self.keep_only_set,
            "options": {},
            "assignments": {
                "assignments": [
                    {
                        # Generated ids must be stable across translations
                        "id": f.id or f"field-{index}",
                        "name": f.name,
                        "value": f.value,
                        "type": f.type,
                    }
                    for index, f in enumerate(self.fields)
                ],
            },
        }


class AggregateField(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: str = ""
    function: str = "sum"
    include_empty: bool = False


class AggregateConfig(NodeConfig):
    operation: str = "summarize"
    fields: List[AggregateField] = Field(default_factory=list)
    group_by: str = ""
    output_format: str = "singleItem"
    disable_dot_notation: bool = False

    def to_parameters(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "fieldsToSummarize": {
                "field": [
                    {
                        "fieldName": f.name,
                        "aggregationFunction": f.function,
                        "includeEmpty": f.include_empty,
                    }
                    for f in self.fields
                ],
            },
            "groupBy": self.group_by,
            "options": {
                "outputFormat": self.output_format,
                "disableDotNotation": self.disable_dot_notation,
            },
        }


class MergeConfig(NodeConfig):
    mode: str = "append"
    join_mode: str = "inner"
    property_name1: str = ""
    property_name2: str = ""
    clash_handling: str = "preferInput2"
    merge_mode: str = "deepMerge"

    def to_parameters(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "joinMode": self.join_mode,
            "propertyName1": self.property_name1,
            "propertyName2": self.property_name2,
            "options": {
                "clashHandling": {
                    "values": {
                        "clashHandling": self.clash_handling,
                        "mergeMode": self.merge_mode,
                    },
                },
            },
        }


class DatabaseConfig(NodeConfig):
    operation: str = "executeQuery"
    query: str = ""
    table: str = ""
    columns: str = ""
    additional_fields: Dict[str, Any] = Field(default_factory=dict)
    query_batching: str = "single"
    connection_timeout: int = 30

    def to_parameters(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "query": self.query,
            "table": self.table,
            "columns": self.columns,
            "additionalFields": self.additional_fields,
            "options": {
                "queryBatching": self.query_batching,
                "connectionTimeout": self.connection_timeout,
            },
        }


class EmailConfig(NodeConfig):
    from_email: str = Field("", validation_alias=AliasChoices("from", "fromEmail", "from_email"))
    to: str = ""
    cc: str = ""
    bcc: str = ""
    subject: str = ""
    is_html: bool = False
    body: str = ""
    attachments: str = ""
    allow_unauthorized_certs: bool = False
    reply_to: str = ""

    def to_parameters(self) -> Dict[str, Any]:
        return {
            "fromEmail": self.from_email,
            "toEmail": self.to,
            "ccEmail": self.cc,
            "bccEmail": self.bcc,
            "subject": self.subject,
            "emailType": "html" if self.is_html else "text",
            "message": self.body,
            "attachments": self.attachments,
            "options": {
                "allowUnauthorizedCerts": self.allow_unauthorized_certs,
                "replyTo": self.reply_to,
            },
        }


class AiChatConfig(NodeConfig):
    resource: str = "chat"
    operation: str = "message"
    model: str = "gpt-3.5-turbo"
    prompt: str = ""
    temperature: float = 0.7
    max_tokens: int = 2000
    top_p: float = 1
    frequency_penalty: float = 0
    presence_penalty: float = 0

    def to_parameters(self) -> Dict[str, Any]:
        return {
            "resource": self.resource,
            "operation": self.operation,
            "modelId": self.model,
            "messages": {"values": [{"role": "user", "content": self.prompt}]},
            "options": {
                "temperature": self.temperature,
                "maxTokens": self.max_tokens,
                "topP": self.top_p,
                "frequencyPenalty": self.frequency_penalty,
                "presencePenalty": self.presence_penalty,
            },
        }


@dataclass(frozen=True)
class NodeKind:
    """How one editor kind becomes an engine node."""
    engine_type: str
    type_version: float = 1
    config_model: Type[NodeConfig] = PassthroughConfig
    output_ports: Tuple[str, ...] = ()
    input_ports: Tuple[str, ...] = ()
    dynamic_outputs: bool = False


_WEBHOOK = NodeKind("n8n-nodes-base.webhook", 1, WebhookConfig)
_HTTP = NodeKind("n8n-nodes-base.httpRequest", 4, HttpRequestConfig)
_CODE = NodeKind("n8n-nodes-base.code", 1, CodeConfig)
_IF = NodeKind("n8n-nodes-base.if", 1, ConditionalConfig, output_ports=("true", "false"))
_SET = NodeKind("n8n-nodes-base.set", 3, SetConfig)
_POSTGRES = NodeKind("n8n-nodes-base.postgres", 2, DatabaseConfig)
_EMAIL = NodeKind("n8n-nodes-base.emailSend", 2, EmailConfig)
_SCHEDULE = NodeKind("n8n-nodes-base.scheduleTrigger", 1, ScheduleTriggerConfig)
_MANUAL = NodeKind("n8n-nodes-base.manualTrigger", 1, ManualTriggerConfig)
_OPENAI = NodeKind("n8n-nodes-base.openAi", 1, AiChatConfig)
_UNKNOWN = NodeKind(NOOP_TYPE, 1, PassthroughConfig)

NODE_KINDS: Dict[str, NodeKind] = {
    # Triggers
    "webhook": _WEBHOOK,
    "trigger": _WEBHOOK,
    "trigger_webhook": _WEBHOOK,
    "trigger_schedule": _SCHEDULE,
    "trigger_manual": _MANUAL,
    "trigger_error": NodeKind("n8n-nodes-base.errorTrigger"),
    # Core
    "http_request": _HTTP,
    "http": _HTTP,
    "transform": _CODE,
    "code": _CODE,
    "conditional": _IF,
    "if": _IF,
    "branch": _IF,
    "switch": NodeKind("n8n-nodes-base.switch", 1, SwitchConfig, dynamic_outputs=True),
    "merge": NodeKind("n8n-nodes-base.merge", 2, MergeConfig, input_ports=("input0", "input1")),
    "aggregate": NodeKind("n8n-nodes-base.aggregate", 1, AggregateConfig),
    "form": NodeKind("n8n-nodes-base.form"),
    "split_in_batches": NodeKind("n8n-nodes-base.splitInBatches"),
    "loop": NodeKind("n8n-nodes-base.splitInBatches"),
    # Data processing
    "set": _SET,
    "json": _SET,
    "filter": NodeKind("n8n-nodes-base.filter", 1, FilterConfig, output_ports=("kept", "discarded")),
    "sort": NodeKind("n8n-nodes-base.sort"),
    "limit": NodeKind("n8n-nodes-base.limit"),
    # Communication
    "email": _EMAIL,
    "slack": NodeKind("n8n-nodes-base.slack"),
    "discord": NodeKind("n8n-nodes-base.discord"),
    "telegram": NodeKind("n8n-nodes-base.telegram"),
    "twilio": NodeKind("n8n-nodes-base.twilio"),
    # AI
    "ai_openai": _OPENAI,
    "ai_agent": _OPENAI,
    "ai_anthropic": NodeKind("@n8n/n8n-nodes-langchain.lmChatAnthropic"),
    "ai_google": NodeKind("@n8n/n8n-nodes-langchain.lmChatGoogleGemini"),
    # Databases
    "database": _POSTGRES,
    "db_postgres": _POSTGRES,
    "db_mysql": NodeKind("n8n-nodes-base.mySql", 2, DatabaseConfig),
    "db_mongodb": NodeKind("n8n-nodes-base.mongoDb"),
    "db_redis": NodeKind("n8n-nodes-base.redis"),
    "db_supabase": NodeKind("n8n-nodes-base.supabase"),
    # Files
    "file_read": NodeKind("n8n-nodes-base.readBinaryFiles"),
    "file_write": NodeKind("n8n-nodes-base.writeBinaryFile"),
    "ftp": NodeKind("n8n-nodes-base.ftp"),
    "ssh": NodeKind("n8n-nodes-base.ssh"),
    # Cloud and SaaS
    "aws_s3": NodeKind("n8n-nodes-base.awsS3"),
    "google_drive": NodeKind("n8n-nodes-base.googleDrive"),
    "dropbox": NodeKind("n8n-nodes-base.dropbox"),
    "github": NodeKind("n8n-nodes-base.github"),
    "gitlab": NodeKind("n8n-nodes-base.gitlab"),
    "jira": NodeKind("n8n-nodes-base.jira"),
    "notion": NodeKind("n8n-nodes-base.notion"),
    "airtable": NodeKind("n8n-nodes-base.airtable"),
    "google_sheets": NodeKind("n8n-nodes-base.googleSheets"),
}


def get_node_kind(kind: str) -> NodeKind:
    """Look up a kind; unknown kinds become the no-op type."""
    return NODE_KINDS.get(kind, _UNKNOWN)


def is_known_kind(kind: str) -> bool:
    return kind in NODE_KINDS


def is_webhook_kind(kind: str) -> bool:
    return get_node_kind(kind) is _WEBHOOK


def parse_config(kind: str, raw: Dict[str, Any]) -> Tuple[NodeConfig, Optional[str]]:
    """Build the typed config record for a kind.

    Returns the record and, when ``raw`` did not validate, a description of
    the problem; the record then carries the kind's defaults.
    """
    spec = get_node_kind(kind)
    try:
        return spec.config_model.model_validate(raw or {}), None
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        return spec.config_model(), problems


def _numbered(handle: str, prefix: str) -> Optional[int]:
    text = handle.strip().lower()
    if text.startswith(prefix):
        text = text[len(prefix):].lstrip("-_")
    return int(text) if text.isdigit() else None


def resolve_output_port(
    spec: NodeKind,
    handle: Optional[str],
    output_count: Optional[int] = None,
) -> Tuple[int, bool]:
    """Map a source handle to an output port index.

    ``output_count`` bounds the ports of kinds whose outputs come from their
    config (see ``NodeConfig.output_count``); without it they have one port.
    Returns ``(index, recognised)``; an unrecognised handle maps to port 0.
    """
    if not handle:
        return 0, True
    if spec.dynamic_outputs:
        index = _numbered(handle, "output")
        if index is not None and index < (output_count or 1):
            return index, True
        return 0, False
    if spec.output_ports:
        name = handle.strip().lower()
        if name in spec.output_ports:
            return spec.output_ports.index(name), True
        index = _numbered(handle, "output")
        if index is not None and index < len(spec.output_ports):
            return index, True
        return 0, False
    # Single-output kinds ignore whatever handle id the editor assigned
    return 0, True


def resolve_input_index(spec: NodeKind, handle: Optional[str]) -> Tuple[int, bool]:
    """Map a target handle to an input index; same contract as the output resolver."""
    if not handle or not spec.input_ports:
        return 0, True
    name = handle.strip().lower()
    if name in spec.input_ports:
        return spec.input_ports.index(name), True
    index = _numbered(handle, "input")
    if index is not None and index < len(spec.input_ports):
        return index, True
    return 0, False


@dataclass
class KindCatalogueEntry:
    """Public description of a kind, as listed by the API."""
    kind: str
    engine_type: str
    type_version: float
    output_ports: List[str] = field(default_factory=list)
    input_ports: List[str] = field(default_factory=list)


def list_node_kinds() -> List[KindCatalogueEntry]:
    return [
        KindCatalogueEntry(
            kind=kind,
            engine_type=spec.engine_type,
            type_version=spec.type_version,
            output_ports=list(spec.output_ports),
            input_ports=list(spec.input_ports),
        )
        for kind, spec in sorted(NODE_KINDS.items())
    ]
