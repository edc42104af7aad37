"""Tests for the AwsClient facade."""

from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError as BotoClientError
from botocore.exceptions import EndpointConnectionError, NoCredentialsError, ParamValidationError
from moto import mock_aws

from converge.aws.client import AwsClient, classify_error_code
from converge.errors import ClientError, ErrorKind


def _boto_error(code, status=400, operation="DescribeTable"):
    return BotoClientError(
        {
            "Error": {"Code": code, "Message": f"{code} happened"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


@pytest.mark.parametrize(
    "code,status,kind",
    [
        ("ThrottlingException", 400, ErrorKind.THROTTLED),
        ("ResourceNotFoundException", 400, ErrorKind.NOT_FOUND),
        ("EntityNotFoundException", 400, ErrorKind.NOT_FOUND),
        ("ResourceInUseException", 400, ErrorKind.CONFLICT),
        ("ConcurrentModificationException", 400, ErrorKind.CONFLICT),
        ("ValidationException", 400, ErrorKind.INVALID_INPUT),
        ("InternalServerError", 500, ErrorKind.TRANSIENT),
        ("SomethingOdd", 503, ErrorKind.TRANSIENT),
        ("SomethingOdd", 429, ErrorKind.THROTTLED),
        ("AccessDeniedException", 400, ErrorKind.FATAL),
    ],
)
def test_classify_error_code(code, status, kind):
    assert classify_error_code(code, status) == kind


def test_retryable_kinds():
    assert ClientError(ErrorKind.THROTTLED, "x").retryable
    assert ClientError(ErrorKind.CONFLICT, "x").retryable
    assert not ClientError(ErrorKind.NOT_FOUND, "x").retryable
    assert not ClientError(ErrorKind.INVALID_INPUT, "x").retryable


def test_invoke_strips_response_metadata():
    client = AwsClient(region="us-east-1")
    mock_boto = MagicMock()
    mock_boto.describe_table.return_value = {
        "Table": {"TableName": "t1"},
        "ResponseMetadata": {"HTTPStatusCode": 200},
    }
    client._clients["dynamodb"] = mock_boto

    response = client.invoke("dynamodb", "describe_table", {"TableName": "t1"})

    assert response == {"Table": {"TableName": "t1"}}
    mock_boto.describe_table.assert_called_once_with(TableName="t1")


def test_invoke_classifies_client_error():
    client = AwsClient(region="us-east-1")
    mock_boto = MagicMock()
    mock_boto.update_table.side_effect = _boto_error("ResourceInUseException")
    client._clients["dynamodb"] = mock_boto

    with pytest.raises(ClientError) as exc_info:
        client.invoke("dynamodb", "update_table", {"TableName": "t1"})

    err = exc_info.value
    assert err.kind == ErrorKind.CONFLICT
    assert err.code == "ResourceInUseException"
    assert err.service == "dynamodb"
    assert err.operation == "update_table"
    assert err.retryable


def test_invoke_connection_error_is_transient():
    client = AwsClient(region="us-east-1")
    mock_boto = MagicMock()
    mock_boto.describe_table.side_effect = EndpointConnectionError(endpoint_url="https://x")
    client._clients["dynamodb"] = mock_boto

    with pytest.raises(ClientError) as exc_info:
        client.invoke("dynamodb", "describe_table", {"TableName": "t1"})

    assert exc_info.value.kind == ErrorKind.TRANSIENT


def test_client_is_created_once():
    session = MagicMock()
    client = AwsClient(session=session)

    first = client.client("dynamodb")
    second = client.client("dynamodb")

    assert first is second
    session.client.assert_called_once()


@mock_aws
def test_invoke_missing_table_is_not_found(aws_credentials):
    """A real provider error code is classified as NOT_FOUND."""
    client = AwsClient(region="us-east-1")

    with pytest.raises(ClientError) as exc_info:
        client.invoke("dynamodb", "describe_table", {"TableName": "missing"})

    assert exc_info.value.kind == ErrorKind.NOT_FOUND


@mock_aws
def test_invoke_bad_parameters_is_invalid_input(aws_credentials):
    client = AwsClient(region="us-east-1")

    with pytest.raises(ClientError) as exc_info:
        client.invoke("dynamodb", "describe_table", {"NotAParameter": "x"})

    assert exc_info.value.kind == ErrorKind.INVALID_INPUT


@mock_aws
def test_paginate_concatenates_pages(aws_credentials):
    boto_ddb = boto3.client("dynamodb", region_name="us-east-1")
    for name in ("alpha", "beta", "gamma"):
        boto_ddb.create_table(
            TableName=name,
            KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "pk", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )

    client = AwsClient(region="us-east-1")
    names = client.paginate(
        "dynamodb", "list_tables", {"PaginationConfig": {"PageSize": 2}}, "TableNames"
    )

    assert sorted(names) == ["alpha", "beta", "gamma"]


@pytest.mark.parametrize(
    "error,kind",
    [
        (ParamValidationError(report="Unknown parameter"), ErrorKind.INVALID_INPUT),
        (EndpointConnectionError(endpoint_url="https://x"), ErrorKind.TRANSIENT),
        (NoCredentialsError(), ErrorKind.FATAL),
    ],
)
def test_paginate_classifies_botocore_errors(error, kind):
    client = AwsClient(region="us-east-1")
    mock_boto = MagicMock()
    mock_boto.get_paginator.return_value.paginate.side_effect = error
    client._clients["ssm"] = mock_boto

    with pytest.raises(ClientError) as exc_info:
        client.paginate("ssm", "describe_patch_baselines", {}, "BaselineIdentities")

    assert exc_info.value.kind == kind
    assert exc_info.value.operation == "describe_patch_baselines"


def test_paginate_classifies_client_error():
    client = AwsClient(region="us-east-1")
    mock_boto = MagicMock()
    mock_boto.get_paginator.return_value.paginate.side_effect = _boto_error("ThrottlingException")
    client._clients["dynamodb"] = mock_boto

    with pytest.raises(ClientError) as exc_info:
        client.paginate("dynamodb", "list_tables", None, "TableNames")

    assert exc_info.value.kind == ErrorKind.THROTTLED
