"""Domain types for the compensation calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Union
from uuid import UUID

ZERO = Decimal("0")


class ComponentCategory(str, Enum):
    """Pay component categories."""

    EARNING = "earning"
    DEDUCTION = "deduction"
    TAX = "tax"
    BENEFIT = "benefit"
    EMPLOYER_COST = "employer_cost"
    REIMBURSEMENT = "reimbursement"


class CalculationType(str, Enum):
    """How a component's value is computed."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"
    FORMULA = "formula"
    HOURLY_RATE = "hourly_rate"
    TIERED = "tiered"
    EXTERNAL = "external"


class TemplateStatus(str, Enum):
    """Pay structure template lifecycle status."""

    DRAFT = "draft"
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    ARCHIVED = "archived"


class TaxType(str, Enum):
    """Tax types apportioned across earning components."""

    WAGE = "wage"
    OLD_AGE = "old_age"
    SURVIVOR = "survivor"

    @classmethod
    def parse(cls, value: TaxType | str) -> TaxType:
        """Accept stored spellings, including "income" as an alias of wage."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        if key == "income":
            return cls.WAGE
        return cls(key)


class CalculationMethod(str, Enum):
    """How a tax rule set computes tax from a basis."""

    BRACKET = "bracket"
    FLAT_RATE = "flat_rate"


class CalculationMode(str, Enum):
    """Policy for attributing tax back to contributing components."""

    AGGREGATED = "aggregated"
    PROPORTIONAL_DISTRIBUTION = "proportional_distribution"
    COMPONENT_BASED = "component_based"


class AllowanceType(str, Enum):
    """Tax-free allowance kinds attached to earning components."""

    TAX_FREE_SUM_MONTHLY = "tax_free_sum_monthly"
    TAX_FREE_SUM_ANNUAL = "tax_free_sum_annual"
    HOLIDAY_ALLOWANCE = "holiday_allowance"
    BONUS_GRATUITY = "bonus_gratuity"


@dataclass(frozen=True, order=True)
class TemplateVersion:
    """Semantic version of a pay structure template (major.minor.patch)."""

    major: int = 1
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, value: str) -> TemplateVersion:
        parts = str(value).strip().split(".")
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise ValueError(f"Invalid template version '{value}', expected major.minor.patch")
        return cls(int(parts[0]), int(parts[1]), int(parts[2]))

    def bump(self, version_type: str) -> TemplateVersion:
        """Return the next version for a 'major', 'minor' or 'patch' change."""
        if version_type == "major":
            return TemplateVersion(self.major + 1, 0, 0)
        if version_type == "minor":
            return TemplateVersion(self.major, self.minor + 1, 0)
        if version_type == "patch":
            return TemplateVersion(self.major, self.minor, self.patch + 1)
        raise ValueError(f"Unknown version type '{version_type}'")

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class Tier:
    """One step of a tiered/progressive schedule."""

    threshold: Decimal
    rate: Decimal  # As decimal, e.g., 0.10 for 10%
    fixed_amount: Decimal = ZERO


@dataclass
class PayComponent:
    """A single line of a pay structure template."""

    component_code: str
    component_name: str
    category: ComponentCategory
    calculation_type: CalculationType
    sequence_order: int

    default_amount: Decimal | None = None
    rate: Decimal | None = None  # Percentage rate as decimal
    percentage_of: str | None = None
    formula: str | None = None
    rate_multiplier: Decimal = Decimal("1.0")
    tiers: Any = None  # Raw tier configuration, validated at evaluation
    tier_basis: str | None = None

    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    depends_on: list[str] = field(default_factory=list)

    affects_gross_pay: bool = True
    affects_net_pay: bool = True
    is_taxable: bool = True
    allowance_type: AllowanceType | None = None
    conditions: dict[str, Any] | None = None

    component_id: UUID | None = None

    @property
    def pattern_condition(self) -> dict[str, Any] | None:
        if self.conditions:
            return self.conditions.get("pattern")
        return None


@dataclass
class ComponentOverride:
    """Worker-scoped replacement of one component's calculation parameters."""

    component_code: str
    reason: str
    override_amount: Decimal | None = None
    override_percentage: Decimal | None = None
    override_rate: Decimal | None = None
    override_formula: str | None = None
    is_disabled: bool = False
    effective_from: date | None = None
    effective_to: date | None = None
    override_id: UUID | None = None

    def __post_init__(self) -> None:
        if not self.reason or not self.reason.strip():
            raise ValueError(f"Override for {self.component_code} requires a reason")

    def is_active_on(self, as_of_date: date) -> bool:
        if self.effective_from is not None and as_of_date < self.effective_from:
            return False
        if self.effective_to is not None and as_of_date > self.effective_to:
            return False
        return True


@dataclass
class PayStructureTemplate:
    """Versioned, ordered set of components."""

    template_id: UUID
    organization_id: UUID
    template_code: str
    template_name: str
    version: TemplateVersion = field(default_factory=TemplateVersion)
    status: TemplateStatus = TemplateStatus.DRAFT
    components: list[PayComponent] = field(default_factory=list)

    def ordered_components(self) -> list[PayComponent]:
        return sorted(self.components, key=lambda c: c.sequence_order)


@dataclass
class WorkerStructureAssignment:
    """Binds one worker to one template version over a date range."""

    assignment_id: UUID
    worker_id: UUID
    organization_id: UUID
    template_id: UUID
    effective_from: date
    effective_to: date | None = None
    is_current: bool = True
    base_salary: Decimal | None = None
    hourly_rate: Decimal | None = None
    pay_frequency: str | None = None
    deleted_at: date | None = None

    def covers(self, as_of_date: date) -> bool:
        if self.deleted_at is not None:
            return False
        if as_of_date < self.effective_from:
            return False
        return self.effective_to is None or as_of_date <= self.effective_to


@dataclass
class ResolvedStructure:
    """A worker's assignment with its template components and active overrides."""

    assignment: WorkerStructureAssignment
    template: PayStructureTemplate
    components: list[PayComponent]
    overrides: list[ComponentOverride] = field(default_factory=list)

    @property
    def override_map(self) -> dict[str, ComponentOverride]:
        return {o.component_code: o for o in self.overrides}


@dataclass
class TaxBracket:
    """Tax bracket for progressive taxation."""

    income_min: Decimal
    income_max: Decimal | None  # None = no upper limit
    rate_percentage: Decimal  # As percentage, e.g., 10 for 10%
    fixed_amount: Decimal = ZERO
    bracket_order: int = 0


@dataclass
class TaxRuleSet:
    """Versioned tax rule set for one tax type in one jurisdiction."""

    rule_set_id: UUID
    tax_type: TaxType
    jurisdiction: str
    calculation_method: CalculationMethod
    brackets: list[TaxBracket] = field(default_factory=list)
    calculation_mode: CalculationMode | None = None
    annual_cap: Decimal | None = None
    effective_from: date | None = None
    effective_to: date | None = None
    version: int = 1
    tax_name: str = ""

    def is_effective_on(self, as_of_date: date) -> bool:
        if self.effective_from is not None and as_of_date < self.effective_from:
            return False
        return self.effective_to is None or as_of_date <= self.effective_to

    def ordered_brackets(self) -> list[TaxBracket]:
        return sorted(self.brackets, key=lambda b: (b.bracket_order, b.income_min))


@dataclass
class ComponentCalculation:
    """One evaluated component line."""

    component_code: str
    component_name: str
    category: ComponentCategory
    amount: Decimal
    is_taxable: bool = True
    affects_gross_pay: bool = True
    allowance_type: AllowanceType | None = None
    calculation_metadata: dict[str, Any] = field(default_factory=dict)

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        return {
            "component_code": self.component_code,
            "category": self.category.value,
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class EarningLine:
    """An earning component handed to the tax stage."""

    component_code: str
    amount: Decimal
    is_taxable: bool = True
    allowance_type: AllowanceType | None = None
    component_name: str = ""


@dataclass(frozen=True)
class ComponentTaxInput:
    """Tax input made of individual earning lines."""

    earnings: tuple[EarningLine, ...]


@dataclass(frozen=True)
class GrossPayTaxInput:
    """Legacy tax input: a single gross pay figure."""

    gross_pay: Decimal


TaxInput = Union[ComponentTaxInput, GrossPayTaxInput]


TAX_FIELDS: dict[TaxType, str] = {
    TaxType.WAGE: "wage_tax",
    TaxType.OLD_AGE: "old_age_tax",
    TaxType.SURVIVOR: "survivor_tax",
}


@dataclass
class ComponentTax:
    """Tax breakdown for one earning component."""

    component_code: str
    amount: Decimal
    is_taxable: bool
    allowance: Decimal = ZERO
    taxable_income: Decimal = ZERO
    wage_tax: Decimal = ZERO
    old_age_tax: Decimal = ZERO
    survivor_tax: Decimal = ZERO
    component_name: str = ""
    calculation_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def total_tax(self) -> Decimal:
        return self.wage_tax + self.old_age_tax + self.survivor_tax

    def get_tax(self, tax_type: TaxType) -> Decimal:
        return getattr(self, TAX_FIELDS[tax_type])

    def set_tax(self, tax_type: TaxType, amount: Decimal) -> None:
        setattr(self, TAX_FIELDS[tax_type], amount)


@dataclass
class TaxSummary:
    """Aggregate totals of a tax calculation."""

    total_gross_pay: Decimal
    total_allowance: Decimal
    total_taxable_income: Decimal
    totals: dict[TaxType, Decimal]
    total_taxes: Decimal
    effective_rate: Decimal  # Percentage of gross
    calculation_modes: dict[TaxType, CalculationMode]
    component_count: int
    warnings: list[str] = field(default_factory=list)


@dataclass
class TaxCalculationResult:
    """Result of the tax apportionment stage."""

    pay_date: date
    pay_period: str
    component_taxes: list[ComponentTax]
    summary: TaxSummary


@dataclass
class PaySummary:
    """Category totals and net pay."""

    total_earnings: Decimal
    total_deductions: Decimal
    total_taxes: Decimal
    net_pay: Decimal


@dataclass
class CalculationInput:
    """Per-call inputs supplied by the payroll-run orchestrator."""

    pay_date: date
    pay_period: str = "monthly"
    base_salary: Decimal | None = None
    hourly_rate: Decimal | None = None
    hours: Decimal | None = None
    pay_frequency: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    is_resident: bool = True
    jurisdiction: str | None = None
    allowed_earning_codes: frozenset[str] | None = None
