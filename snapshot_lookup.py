import boto3
import yaml
from botocore.exceptions import ClientError
from utils import *
from snapshot_copy import snapshot_attributes


SHARED_SNAPSHOT_TYPES = [ 'shared', 'public' ]


def lambda_handler(event, context):
    client = boto3.client('rds', region_name=event.get('region', DEFAULT_REGION))
    return read_snapshot(
        client,
        db_instance_identifier=event.get('db_instance_identifier'),
        db_snapshot_identifier=event.get('db_snapshot_identifier'),
        snapshot_type=event.get('snapshot_type'),
        include_shared=event.get('include_shared', False),
        include_public=event.get('include_public', False),
        most_recent=event.get('most_recent', False),
    )

def filter_by_instance(snapshots, instance_id):
    """Keep the snapshots taken from instance_id, in their original order.

    Shared and public snapshots can't be queried by instance identifier, as
    RDS only matches instances from the current account, so this runs after
    the query.
    """
    results = [ snapshot for snapshot in snapshots if snapshot.get('DBInstanceIdentifier') == instance_id ]
    logger.debug("Of %i snapshots, %i had DBInstanceIdentifier == %s", len(snapshots), len(results), instance_id)
    return results

def most_recent_snapshot(snapshots):
    if not snapshots:
        raise ValueError('most_recent_snapshot needs at least one snapshot')

    def created(snapshot):
        # Snapshot creation can be in progress
        if snapshot.get('SnapshotCreateTime') is None:
            return (0,)
        return (1, snapshot['SnapshotCreateTime'])

    return sorted(snapshots, key=created)[-1]

def is_shared_query(snapshot_type, include_shared, include_public):
    return snapshot_type in SHARED_SNAPSHOT_TYPES or include_shared or include_public

def describe_params(db_instance_identifier=None, db_snapshot_identifier=None, snapshot_type=None, include_shared=False, include_public=False):
    params = {
        'IncludePublic': include_public,
        'IncludeShared': include_shared,
    }
    if snapshot_type:
        params['SnapshotType'] = snapshot_type

    if db_instance_identifier:
        if is_shared_query(snapshot_type, include_shared, include_public):
            logger.debug("Not combining DBInstanceIdentifier with SnapshotType %s in query, filtering client-side instead", snapshot_type)
        else:
            params['DBInstanceIdentifier'] = db_instance_identifier

    if db_snapshot_identifier:
        params['DBSnapshotIdentifier'] = db_snapshot_identifier

    return params

def lookup_snapshot(client, db_instance_identifier=None, db_snapshot_identifier=None, snapshot_type=None, include_shared=False, include_public=False, most_recent=False):
    criteria = db_snapshot_identifier or db_instance_identifier
    if not criteria:
        raise InvalidCriteria(None, 'lookup', 'One of db_snapshot_identifier or db_instance_identifier must be assigned')

    log = snapshot_logger(criteria, 'lookup')
    params = describe_params(db_instance_identifier, db_snapshot_identifier, snapshot_type, include_shared, include_public)
    log.debug("Reading DB Snapshot: %s", yaml.dump(params))
    try:
        snapshots = paginate_api_call(client, 'describe_db_snapshots', 'DBSnapshots', **params)['DBSnapshots']
    except ClientError as e:
        error = client_error(e, criteria, 'lookup')
        # A missing DBSnapshotIdentifier is simply an empty result
        if not isinstance(error, SnapshotNotFound):
            raise error from e
        snapshots = []

    if db_instance_identifier and is_shared_query(snapshot_type, include_shared, include_public):
        snapshots = filter_by_instance(snapshots, db_instance_identifier)

    if len(snapshots) < 1:
        raise NoMatch(criteria, 'lookup', 'Your query returned no results. Please change your search criteria and try again.')

    if len(snapshots) > 1:
        log.debug("Multiple results found and most_recent is set to: %s", most_recent)
        if not most_recent:
            raise AmbiguousSelection(criteria, 'lookup', 'Your query returned more than one result (%i). Please try a more specific search criteria.' % len(snapshots))
        return most_recent_snapshot(snapshots)

    return snapshots[0]

def read_snapshot(client, **criteria):
    return snapshot_attributes(lookup_snapshot(client, **criteria))
