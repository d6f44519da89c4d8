import pytest
from xrpl.wallet import Wallet

from launchpad.models import ImageFile, TokenDeployParams, TokenMetadataInput
from launchpad.monitor import MonitoringConfig


@pytest.fixture
def fast_config() -> MonitoringConfig:
    return MonitoringConfig(polling_interval_ms=1, max_retries=10, timeout_ms=60_000, jitter_ms=0, max_delay_ms=50)


@pytest.fixture(scope="session")
def issuer() -> Wallet:
    return Wallet.create()


@pytest.fixture
def params(issuer) -> TokenDeployParams:
    return TokenDeployParams(
        name="Launch Token",
        symbol="LNCH",
        decimals=6,
        initial_supply="1000000",
        admin_wallet=issuer.address,
    )


@pytest.fixture
def png() -> ImageFile:
    return ImageFile(filename="logo.png", content=b"\x89PNG\r\n\x1a\n" + b"\0" * 64, content_type="image/png")


@pytest.fixture
def params_with_metadata(params, png) -> TokenDeployParams:
    return TokenDeployParams(
        name=params.name,
        symbol=params.symbol,
        decimals=params.decimals,
        initial_supply=params.initial_supply,
        admin_wallet=params.admin_wallet,
        metadata=TokenMetadataInput(image=png, description="A token for testing"),
    )
