"""Data models for supplier recipes and their execution results.

A recipe is an ordered list of steps for one supplier. Each step is one
variant of a closed union keyed by its ``action`` field, so a step only carries
the fields its action uses. Field names on the wire follow the recipe database
format (camelCase); Python code uses snake_case attributes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class _RecipeModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


class OAuth2Config(_RecipeModel):
    """OAuth2 client configuration captured by an ``oauth2-setup`` step."""

    auth_url: str = Field(alias="authUrl")
    token_url: str = Field(alias="tokenUrl")
    redirect_url: str = Field(alias="redirectUrl")
    client_id: str = Field(alias="clientId")
    scope: str = ""
    pkce_method: Literal["S256", "plain"] = Field(default="S256", alias="pkceMethod")
    pkce_verifier_length: int = Field(default=64, alias="pkceVerifierLength", ge=43, le=128)


class _Step(_RecipeModel):
    action: str
    description: str = ""


# --- Browser steps ---


class OpenStep(_Step):
    action: Literal["open"]
    url: str


class RemoveElementStep(_Step):
    action: Literal["removeElement"]
    selector: str


class ClickStep(_Step):
    action: Literal["click"]
    selector: str


class TypeStep(_Step):
    action: Literal["type"]
    selector: str
    value: str = ""


class SleepStep(_Step):
    action: Literal["sleep"]
    value: str = "0"  # Seconds


class WaitForStep(_Step):
    action: Literal["waitFor"]
    selector: str


class DownloadAllStep(_Step):
    action: Literal["downloadAll"]
    selector: str
    value: str = ""  # XPath suffix of the element to click inside each matched node


class TransformStep(_Step):
    action: Literal["transform"]
    value: str


class MoveStep(_Step):
    action: Literal["move"]
    value: str  # Regular expression matched against staged file names


class RunScriptStep(_Step):
    action: Literal["runScript"]
    value: str


class RunScriptDownloadUrlsStep(_Step):
    action: Literal["runScriptDownloadUrls"]
    value: str


# --- OAuth2 client steps ---


class OAuth2SetupStep(_Step):
    action: Literal["oauth2-setup"]
    oauth2: OAuth2Config


class OAuth2CheckTokensStep(_Step):
    action: Literal["oauth2-check-tokens"]


class OAuth2AuthenticateStep(_Step):
    action: Literal["oauth2-authenticate"]


class OAuth2PostAndGetItemsStep(_Step):
    action: Literal["oauth2-post-and-get-items"]
    url: str
    method: str = "POST"
    body: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    extract_document_ids: str = Field(alias="extractDocumentIds")
    extract_document_filenames: str = Field(default="", alias="extractDocumentFilenames")
    document_url: str = Field(alias="documentUrl")
    document_request_method: str = Field(default="GET", alias="documentRequestMethod")
    document_request_headers: dict[str, str] = Field(default_factory=dict, alias="documentRequestHeaders")


BrowserStep = Union[
    OpenStep,
    RemoveElementStep,
    ClickStep,
    TypeStep,
    SleepStep,
    WaitForStep,
    DownloadAllStep,
    TransformStep,
    MoveStep,
    RunScriptStep,
    RunScriptDownloadUrlsStep,
]

ClientStep = Union[
    OAuth2SetupStep,
    OAuth2CheckTokensStep,
    OAuth2AuthenticateStep,
    OAuth2PostAndGetItemsStep,
]

Step = Annotated[Union[BrowserStep, ClientStep], Field(discriminator="action")]

CLIENT_STEP_TYPES = (OAuth2SetupStep, OAuth2CheckTokensStep, OAuth2AuthenticateStep, OAuth2PostAndGetItemsStep)

RecipeType = Literal["browser", "client"]


class Recipe(_RecipeModel):
    """A versioned, ordered script of steps for one supplier."""

    supplier: str = Field(validation_alias=AliasChoices("supplier", "provider"))
    version: str
    domains: list[str] = Field(default_factory=list)
    steps: list[Step] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_single_driver(self) -> "Recipe":
        client_steps = sum(isinstance(step, CLIENT_STEP_TYPES) for step in self.steps)
        if 0 < client_steps < len(self.steps):
            raise ValueError(f"Recipe {self.supplier!r} mixes browser and oauth2 steps")
        return self

    @property
    def type(self) -> RecipeType:
        """Which driver runs this recipe."""
        return "client" if isinstance(self.steps[0], CLIENT_STEP_TYPES) else "browser"

    def step_id(self, index: int, step: _Step) -> str:
        """Diagnostic identifier of the ``index``-th (1-based) step."""
        return f"{self.supplier}-{self.version}-{index}-{step.action}"


# --- Execution results ---


class StepStatus(str, Enum):
    """Outcome of a single step."""

    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class StepResult:
    """Result of one step.

    ``break_recipe`` marks a hard failure: the recipe is aborted at once. A
    soft failure is recorded but the next step still runs.
    """

    status: StepStatus
    message: str = ""
    break_recipe: bool = False

    @classmethod
    def success(cls, message: str = "") -> "StepResult":
        return cls(status=StepStatus.SUCCESS, message=message)

    @classmethod
    def error(cls, message: str, break_recipe: bool = False) -> "StepResult":
        return cls(status=StepStatus.ERROR, message=message, break_recipe=break_recipe)

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS


@dataclass(frozen=True)
class RecipeResult:
    """Outcome of one recipe run, reported to the caller."""

    status: StepStatus
    status_text: str
    status_text_formatted: str
    last_step_id: str
    last_step_description: str
    last_error_message: str = ""
    new_files_count: int = 0

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS
