import datetime

import pydantic as pdc
import pytest

from labctl.types import ListNamespaces, RepoDetails


def test_list_namespaces__wire_names():
    listing = ListNamespaces.model_validate(
        {
            "namespaces": [
                {
                    "name": "myns",
                    "credit": "3.10",
                    "repositories": [
                        {"name": "myns/app", "created_at": "2023-04-05T06:07:08Z", "num_tags": 2}
                    ],
                }
            ]
        }
    )

    ns = listing.namespaces[0]
    assert ns.credit == "3.10"
    assert ns.repos[0].total_tags == 2
    assert ns.repos[0].created == datetime.datetime(
        2023, 4, 5, 6, 7, 8, tzinfo=datetime.timezone.utc
    )


def test_list_namespaces__empty():
    assert ListNamespaces.model_validate({}).namespaces == []


def test_repo_details__no_created_at():
    repo = RepoDetails.model_validate({"name": "myns/app", "created_at": ""})

    assert repo.created == datetime.datetime.min
    assert repo.total_tags == 0


@pytest.mark.parametrize(
    "record",
    [
        pytest.param({"name": "myns/app", "num_tags": 1}, id="missing"),
        pytest.param({"name": "myns/app", "created_at": None}, id="null"),
    ],
)
def test_repo_details__created_at_absent(record):
    repo = RepoDetails.model_validate(record)

    assert repo.created_at is None
    assert repo.created == datetime.datetime.min


def test_repo_details__malformed_created_at():
    with pytest.raises(pdc.ValidationError):
        RepoDetails.model_validate({"name": "myns/app", "created_at": "yesterday"})
