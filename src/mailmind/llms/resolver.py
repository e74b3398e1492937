"""
Model resolution for Mailmind.

Turns a user's provider/model preferences into the concrete model a
backend can call. Resolution is recomputed on every call so that
configuration changes take effect immediately.
"""

import logging

from mailmind.config.schema import LLMConfig
from mailmind.llms.exceptions import ConfigurationError
from mailmind.llms.models import CallableModel, Provider, ResolvedModel, UserAIFields
from mailmind.secrets import ProviderKeyStore, SecretsError

logger = logging.getLogger(__name__)


def parse_provider(name: str) -> Provider:
    """
    Look up a provider by name.

    Raises:
        ConfigurationError: If the provider is not supported.
    """
    try:
        return Provider(name.strip().lower())
    except ValueError:
        supported = ", ".join(p.value for p in Provider)
        raise ConfigurationError(
            f"Unknown provider '{name}'. Supported providers: {supported}"
        ) from None


def resolve_model(
    user_ai: UserAIFields,
    use_economy_model: bool = False,
    *,
    config: LLMConfig,
    key_store: ProviderKeyStore | None = None,
) -> ResolvedModel:
    """
    Resolve the provider, model and credentials for one call.

    The provider is the user's choice or the configured default. The
    model is the provider's economy model when requested and configured,
    otherwise the user's model or the provider's default model. Users
    without their own key fall back to the system key for the provider.

    Args:
        user_ai: The user's provider/model preferences.
        use_economy_model: Prefer the provider's cheaper model.
        config: LLM configuration.
        key_store: System key store, consulted when the user has no key.

    Returns:
        The resolved model.

    Raises:
        ConfigurationError: If the provider is unknown, no model can be
            determined, or a provider that needs a key has none.
    """
    provider = parse_provider(user_ai.provider or config.default_provider)

    model_id = None
    if use_economy_model:
        model_id = config.economy_models.get(provider.value)
        if model_id is None:
            logger.debug(f"No economy model for {provider.value}, using the regular model")
    if model_id is None:
        model_id = user_ai.model or config.default_models.get(provider.value)
    if not model_id:
        raise ConfigurationError(f"No model configured for provider '{provider.value}'")

    api_key = None
    if provider.requires_api_key:
        api_key = user_ai.api_key
        if not api_key and key_store is not None:
            try:
                api_key = key_store.resolve(provider.value)
            except SecretsError as e:
                raise ConfigurationError(
                    f"Cannot read the system API key for '{provider.value}': {e}"
                ) from e
        if not api_key:
            raise ConfigurationError(f"No API key available for provider '{provider.value}'")

    api_base = config.ollama_base_url if provider is Provider.OLLAMA else None

    return ResolvedModel(
        provider=provider,
        model_id=model_id,
        callable_model=CallableModel(
            provider=provider.value,
            litellm_model=f"{provider.litellm_prefix}/{model_id}",
            api_key=api_key,
            api_base=api_base,
        ),
    )
