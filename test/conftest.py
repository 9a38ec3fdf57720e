from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError


def client_error(code, operation='DeleteDBSnapshot', message='boom'):
    return ClientError({'Error': {'Code': code, 'Message': message}}, operation)


def snapshot(identifier, instance='db-1', status='available', created=None, **extra):
    record = {
        'DBSnapshotIdentifier': identifier,
        'DBInstanceIdentifier': instance,
        'DBSnapshotArn': 'arn:aws:rds:us-east-1:123456789012:snapshot:%s' % identifier,
        'Status': status,
        'Engine': 'postgres',
        'SnapshotType': 'manual',
    }
    if instance is None:
        del record['DBInstanceIdentifier']
    if created is not None:
        record['SnapshotCreateTime'] = created
    record.update(extra)
    return record


def at(day, hour=0):
    return datetime(2024, 1, day, hour, tzinfo=timezone.utc)


class FakePaginator:
    def __init__(self, pages):
        self.pages = pages
        self.kwargs = None

    def paginate(self, **kwargs):
        self.kwargs = kwargs
        for page in self.pages:
            if isinstance(page, Exception):
                raise page
            yield page


class FakeRDSClient:
    """Answers each call from a queue of responses; exceptions are raised."""

    def __init__(self, copy=None, describe=None, delete=None, pages=None, tags=None):
        self.copy_responses = list(copy or [])
        self.describe_responses = list(describe or [])
        self.delete_responses = list(delete or [])
        self.paginator = FakePaginator(pages or [])
        self.tags = tags or []
        self.calls = []

    def _answer(self, responses):
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def copy_db_snapshot(self, **kwargs):
        self.calls.append(('copy_db_snapshot', kwargs))
        return self._answer(self.copy_responses)

    def describe_db_snapshots(self, **kwargs):
        self.calls.append(('describe_db_snapshots', kwargs))
        return self._answer(self.describe_responses)

    def delete_db_snapshot(self, **kwargs):
        self.calls.append(('delete_db_snapshot', kwargs))
        return self._answer(self.delete_responses)

    def list_tags_for_resource(self, **kwargs):
        self.calls.append(('list_tags_for_resource', kwargs))
        return {'TagList': self.tags}

    def get_paginator(self, api_call):
        self.calls.append(('get_paginator', api_call))
        return self.paginator

    def count(self, name):
        return len([call for call in self.calls if call[0] == name])


class FakeLambdaContext:
    def __init__(self, remaining_ms):
        self.remaining_ms = remaining_ms

    def get_remaining_time_in_millis(self):
        return self.remaining_ms


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
