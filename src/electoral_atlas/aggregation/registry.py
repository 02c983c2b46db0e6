"""Registry of metric domains."""

from electoral_atlas.config import Settings
from electoral_atlas.errors import InvalidDomain

from .base import MetricDomain


class MetricDomainRegistry:
    """Registry for discovering and instantiating metric domains."""

    _domains: dict[str, type[MetricDomain]] = {}

    @classmethod
    def register(cls, domain_class: type[MetricDomain]) -> type[MetricDomain]:
        """Decorator to register a metric domain.

        Example:
            @MetricDomainRegistry.register
            class ElectionResultsDomain(MetricDomain):
                ...
        """
        domain_name = domain_class.domain_name.fget(None)  # type: ignore
        cls._domains[domain_name] = domain_class
        return domain_class

    @classmethod
    def get_domain(cls, name: str, settings: Settings) -> MetricDomain:
        """Instantiate a domain by name.

        Raises:
            InvalidDomain: If the name is not registered
        """
        if name not in cls._domains:
            raise InvalidDomain(name, cls.list_domains())
        return cls._domains[name](settings)

    @classmethod
    def list_domains(cls) -> list[str]:
        return sorted(cls._domains)
