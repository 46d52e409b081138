"""YAML parser and metric registry for salesmetrics.

the registry is the single source of truth for metric definitions. it is
built once, validated, then frozen and handed to the engines - nothing
mutates it at request time so it can be shared across worker threads.
"""

from collections.abc import Iterable
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from salesmetrics.errors import MetricNotFound
from salesmetrics.models.metric import (
    AttributionContext,
    AverageMetricParams,
    CountMetricParams,
    MetricDefinition,
    MetricOptions,
    RatioMetricParams,
    SumMetricParams,
)
from salesmetrics.models.source import ActivitySource, BreakdownType

# which variants a source gets when a metric asks for attribution_variants
VARIANT_CONTEXTS: dict[str, tuple[AttributionContext, ...]] = {
    "appointments": (AttributionContext.ASSIGNED, AttributionContext.BOOKED),
    "discoveries": (AttributionContext.ASSIGNED, AttributionContext.BOOKED),
    "deals": (AttributionContext.ASSIGNED, AttributionContext.BOOKED),
    "payments": (AttributionContext.ASSIGNED, AttributionContext.BOOKED),
    "dials": (AttributionContext.DIALER,),
}

_VARIANT_LABELS = {
    AttributionContext.ASSIGNED: ("Assigned", "credited to the assigned rep"),
    AttributionContext.BOOKED: ("Booked", "credited to the setter who booked it"),
    AttributionContext.DIALER: ("Dialer", "credited to the setter who dialed"),
}


class MetricRegistry:
    """Read-only lookup of sources and metric definitions.

    use one of the constructors (from_directory, default, from_definitions);
    they all end up in __init__ which validates everything before exposing it.
    """

    def __init__(
        self,
        sources: Iterable[ActivitySource],
        metrics: Iterable[MetricDefinition],
    ) -> None:
        source_map: dict[str, ActivitySource] = {}
        for source in sources:
            if source.name in source_map:
                raise ValueError(f"Duplicate source: {source.name}")
            source_map[source.name] = source

        metric_map: dict[str, MetricDefinition] = {}
        for metric in metrics:
            if metric.name in metric_map:
                raise ValueError(f"Duplicate metric: {metric.name}")
            metric_map[metric.name] = metric

        self._sources = MappingProxyType(source_map)
        self._metrics = MappingProxyType(metric_map)
        self._validate_references()

    # --- constructors ---

    @classmethod
    def from_directory(cls, path: Path | str) -> "MetricRegistry":
        """Load all YAML files from a directory.

        recursively finds yaml/yml files. files are read in sorted order so
        catalog order (and get_all_metric_names) is stable between runs.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Metrics directory not found: {path}")

        yaml_files = sorted(list(path.glob("**/*.yaml")) + list(path.glob("**/*.yml")))
        if not yaml_files:
            raise ValueError(f"No YAML files found in {path}")

        sources: list[ActivitySource] = []
        metrics: list[MetricDefinition] = []
        for yaml_file in yaml_files:
            with open(yaml_file) as f:
                data = yaml.safe_load(f)
            file_sources, file_metrics = _parse_document(data)
            sources.extend(file_sources)
            metrics.extend(file_metrics)

        return cls(sources, metrics)

    @classmethod
    def from_yaml(cls, text: str) -> "MetricRegistry":
        """Build a registry from a single YAML document."""
        sources, metrics = _parse_document(yaml.safe_load(text))
        return cls(sources, metrics)

    @classmethod
    def default(cls) -> "MetricRegistry":
        """The catalog that ships with the package."""
        catalog = resources.files("salesmetrics").joinpath("catalog/default.yaml")
        return cls.from_yaml(catalog.read_text())

    @classmethod
    def from_definitions(
        cls,
        sources: Iterable[ActivitySource],
        metrics: Iterable[MetricDefinition],
    ) -> "MetricRegistry":
        """Registry from already-built models. mostly for fake catalogs in tests."""
        return cls(sources, metrics)

    # --- validation ---

    def _validate_references(self) -> None:
        """Catch broken catalogs at load time rather than at query time."""
        for name, metric in self._metrics.items():
            source = self._sources.get(metric.source)
            if source is None:
                raise ValueError(f"Metric '{name}' references unknown source '{metric.source}'")

            for breakdown in (metric.breakdown_type, *metric.options.breakdowns):
                if not source.supports(breakdown):
                    raise ValueError(
                        f"Metric '{name}' declares a {breakdown.value} breakdown but "
                        f"source '{source.name}' has no column for it"
                    )

            if metric.type != "ratio":
                continue

            params = metric.type_params
            if not isinstance(params, RatioMetricParams):
                continue
            for part_name in (params.numerator, params.denominator):
                part = self._metrics.get(part_name)
                if part is None:
                    raise ValueError(
                        f"Ratio metric '{name}' references unknown metric '{part_name}'"
                    )
                # parts share one scan with the ratio, so they must be plain
                # aggregates over the same table
                if part.source != metric.source:
                    raise ValueError(
                        f"Ratio metric '{name}' and its part '{part_name}' "
                        f"are on different sources"
                    )
                if not part.is_additive:
                    raise ValueError(
                        f"Ratio metric '{name}' part '{part_name}' must be a count or sum metric"
                    )

    # --- lookup methods ---

    @property
    def metrics(self) -> MappingProxyType:
        return self._metrics

    @property
    def sources(self) -> MappingProxyType:
        return self._sources

    def get_metric(self, name: str) -> MetricDefinition:
        """Get a metric by name. raises MetricNotFound (a KeyError) if unknown."""
        try:
            return self._metrics[name]
        except KeyError:
            raise MetricNotFound(name) from None

    def get_all_metric_names(self) -> list[str]:
        """All metric names, in catalog order."""
        return list(self._metrics)

    def get_source(self, name: str) -> ActivitySource:
        if name not in self._sources:
            raise KeyError(f"Unknown source: {name}")
        return self._sources[name]

    def source_for(self, metric: MetricDefinition) -> ActivitySource:
        return self._sources[metric.source]

    def metrics_for_breakdown(self, breakdown: BreakdownType) -> list[MetricDefinition]:
        """Metrics that can be grouped by the given breakdown."""
        return [m for m in self._metrics.values() if m.supports_breakdown(breakdown)]

    def __contains__(self, name: object) -> bool:
        return name in self._metrics

    def __len__(self) -> int:
        return len(self._metrics)


def _parse_document(data: Any) -> tuple[list[ActivitySource], list[MetricDefinition]]:
    """Parse one yaml document into sources and metrics.

    documents can contain sources, metrics, or both. an empty document is
    fine, handy for templates.
    """
    if data is None:
        return [], []

    sources = [ActivitySource.model_validate(s) for s in data.get("sources", [])]
    metrics: list[MetricDefinition] = []
    for metric_data in data.get("metrics", []):
        metric = _parse_metric(metric_data)
        metrics.append(metric)
        if metric_data.get("attribution_variants"):
            metrics.extend(_attribution_variants(metric))
    return sources, metrics


def _parse_metric(data: dict[str, Any]) -> MetricDefinition:
    """Parse a metric definition, dispatching type_params on the metric type.

    the discriminator lives on the parent (type), not inside the params, so
    pydantic's own discriminated unions don't help here.
    """
    metric_type = data.get("type")
    type_params_data = data.get("type_params") or {}

    if metric_type == "count":
        type_params = CountMetricParams(**type_params_data)
    elif metric_type == "sum":
        type_params = SumMetricParams(**type_params_data)
    elif metric_type == "average":
        type_params = AverageMetricParams(**type_params_data)
    elif metric_type == "ratio":
        type_params = RatioMetricParams(**type_params_data)
    else:
        raise ValueError(f"Unknown metric type: {metric_type}")

    return MetricDefinition(
        name=data["name"],
        label=data.get("label"),
        description=data.get("description") or "",
        unit=data.get("unit", "count"),
        breakdown_type=data.get("breakdown_type", "total"),
        source=data["source"],
        type=metric_type,
        type_params=type_params,
        filter=data.get("filter"),
        options=MetricOptions.model_validate(data.get("options") or {}),
        attribution_context=data.get("attribution_context"),
    )


def _attribution_variants(metric: MetricDefinition) -> list[MetricDefinition]:
    """Role-specific copies of a metric, e.g. show_rate_assigned / show_rate_booked."""
    variants = []
    for context in VARIANT_CONTEXTS.get(metric.source, ()):
        suffix, blurb = _VARIANT_LABELS[context]
        description = f"{metric.description} ({blurb})" if metric.description else blurb
        variants.append(
            metric.model_copy(
                update={
                    "name": f"{metric.name}_{context.value}",
                    "label": f"{metric.display_name} ({suffix})",
                    "description": description,
                    "attribution_context": context,
                }
            )
        )
    return variants
