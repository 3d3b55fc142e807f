# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from biosyn.errors import (
    AuthMissing,
    ChannelError,
    ContentRejected,
    DeviceUnavailable,
    ErrorCategory,
    MalformedResponse,
    Offline,
    TransientServerOverload,
    classify_error,
)


@pytest.mark.parametrize(
    "error, category",
    [
        (AuthMissing("no key"), ErrorCategory.AUTH_ERROR),
        (MalformedResponse("bad json"), ErrorCategory.DATA_ERROR),
        (ContentRejected("flagged"), ErrorCategory.SAFETY_ERROR),
        (Offline("analysis"), ErrorCategory.OFFLINE_ERROR),
        (DeviceUnavailable("busy"), ErrorCategory.DEVICE_ERROR),
        (ChannelError("reset"), ErrorCategory.CONNECTION_LOST),
        (TransientServerOverload("503"), ErrorCategory.SYSTEM_ERROR),
        (RuntimeError("unexpected"), ErrorCategory.SYSTEM_ERROR),
    ],
)
def test_every_error_maps_to_one_category(error, category):
    classified = classify_error(error)

    assert classified.category is category
    assert classified.cause is error
    assert str(classified).startswith(category.value + ": ")
