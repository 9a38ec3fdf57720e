import boto3
import yaml
from botocore.exceptions import ClientError
from utils import *


FAILED_STATUSES = [ 'failed', 'deleted', 'deleting', 'incompatible-restore', 'incompatible-parameters' ]

SNAPSHOT_ATTRIBUTES = {
    'db_instance_identifier': 'DBInstanceIdentifier',
    'db_snapshot_identifier': 'DBSnapshotIdentifier',
    'db_snapshot_arn': 'DBSnapshotArn',
    'snapshot_type': 'SnapshotType',
    'storage_type': 'StorageType',
    'allocated_storage': 'AllocatedStorage',
    'availability_zone': 'AvailabilityZone',
    'encrypted': 'Encrypted',
    'engine': 'Engine',
    'engine_version': 'EngineVersion',
    'iops': 'Iops',
    'kms_key_id': 'KmsKeyId',
    'license_model': 'LicenseModel',
    'option_group_name': 'OptionGroupName',
    'port': 'Port',
    'source_db_snapshot_identifier': 'SourceDBSnapshotIdentifier',
    'source_region': 'SourceRegion',
    'status': 'Status',
    'vpc_id': 'VpcId',
}


def lambda_handler(event, context):
    client = boto3.client('rds', region_name=event.get('region', DEFAULT_REGION))
    action = event.get('action')

    if action == 'create':
        options = {}
        for key in ['destination_region', 'kms_key_id', 'option_group_name', 'presigned_url', 'copy_tags', 'tags']:
            if key in event:
                options[key] = event[key]
        snapshot = copy_snapshot(client, event['source_db_snapshot_identifier'], event['target_db_snapshot_identifier'], event['source_region'], policy=lambda_policy(COPY_TIMEOUT, context), **options)
        return read_snapshot_copy(client, snapshot['DBSnapshotIdentifier'])

    if action == 'read':
        return read_snapshot_copy(client, event['id'])

    if action == 'delete':
        delete_snapshot(client, event['id'], lambda_policy(DELETE_TIMEOUT, context))
        return None

    raise ValueError('Unsupported action: %s' % action)

def build_copy_request(source_db_snapshot_identifier, target_db_snapshot_identifier, source_region, destination_region=UNSET, kms_key_id=UNSET, option_group_name=UNSET, presigned_url=UNSET, copy_tags=UNSET, tags=UNSET):
    request = {
        'SourceDBSnapshotIdentifier': source_db_snapshot_identifier,
        'TargetDBSnapshotIdentifier': target_db_snapshot_identifier,
        'SourceRegion': source_region,
    }
    set_if_present(request, 'DestinationRegion', destination_region)
    set_if_present(request, 'KmsKeyId', kms_key_id)
    set_if_present(request, 'OptionGroupName', option_group_name)
    set_if_present(request, 'PreSignedUrl', presigned_url)
    set_if_present(request, 'CopyTags', copy_tags)
    if tags is not UNSET:
        request['Tags'] = tag_list(tags)

    return request

def copy_snapshot(client, source_db_snapshot_identifier, target_db_snapshot_identifier, source_region, policy=None, cancel=None, **options):
    log = snapshot_logger(target_db_snapshot_identifier, 'copy')
    request = build_copy_request(source_db_snapshot_identifier, target_db_snapshot_identifier, source_region, **options)
    log.info("Copying snapshot %s to %s from %s", source_db_snapshot_identifier, target_db_snapshot_identifier, source_region)
    try:
        response = client.copy_db_snapshot(**request)
    except ClientError as e:
        log.error("Copy of %s rejected: %s", source_db_snapshot_identifier, error_message(e))
        raise SnapshotRejected(target_db_snapshot_identifier, 'copy', error_message(e)) from e

    identifier = response['DBSnapshot']['DBSnapshotIdentifier']
    return wait_for_available(client, identifier, policy, cancel)

def describe_snapshot(client, identifier):
    try:
        response = client.describe_db_snapshots(DBSnapshotIdentifier=identifier)
    except ClientError as e:
        error = client_error(e, identifier, 'describe')
        if isinstance(error, SnapshotNotFound):
            return None
        raise error from e

    if not response['DBSnapshots']:
        return None
    return response['DBSnapshots'][0]

def wait_for_available(client, identifier, policy=None, cancel=None):
    if policy is None:
        policy = WaitPolicy(COPY_TIMEOUT)
    log = snapshot_logger(identifier, 'copy')
    log.info("Waiting for snapshot %s to become available", identifier)

    def check():
        snapshot = describe_snapshot(client, identifier)
        # Freshly copied snapshots may not be visible yet
        if snapshot is None:
            return None
        if snapshot['Status'] == 'available':
            return snapshot
        if snapshot['Status'] in FAILED_STATUSES:
            log.error("Snapshot %s failed: %s", identifier, yaml.dump(snapshot))
            raise SnapshotFailed(identifier, 'copy', snapshot['Status'])
        return None

    snapshot = poll(check, policy, identifier, 'copy', cancel)
    log.info("Snapshot %s is available", identifier)
    return snapshot

def snapshot_attributes(snapshot):
    attributes = { 'id': snapshot['DBSnapshotIdentifier'] }
    for attribute, key in SNAPSHOT_ATTRIBUTES.items():
        attributes[attribute] = snapshot.get(key)

    if snapshot.get('SnapshotCreateTime') is not None:
        attributes['snapshot_create_time'] = snapshot['SnapshotCreateTime'].isoformat()

    return attributes

def read_snapshot_copy(client, identifier):
    snapshot = describe_snapshot(client, identifier)
    if snapshot is None:
        logger.info("Snapshot %s not found, removing from state", identifier)
        return None

    attributes = snapshot_attributes(snapshot)
    try:
        response = client.list_tags_for_resource(ResourceName=snapshot['DBSnapshotArn'])
    except ClientError as e:
        raise client_error(e, identifier, 'list tags') from e
    attributes['tags'] = tag_map(response['TagList'])

    return attributes

def delete_snapshot(client, identifier, policy=None, cancel=None):
    if policy is None:
        policy = WaitPolicy(DELETE_TIMEOUT)
    log = snapshot_logger(identifier, 'delete')

    def attempt():
        try:
            client.delete_db_snapshot(DBSnapshotIdentifier=identifier)
        except ClientError as e:
            error = client_error(e, identifier, 'delete')
            if isinstance(error, SnapshotInUse):
                log.info("Snapshot %s in use, trying again while it detaches (%s)", identifier, error_code(e))
                return None
            if isinstance(error, SnapshotNotFound):
                log.info("Snapshot does not exist: %s (%s)", identifier, error_code(e))
                return True
            log.error("Error deleting snapshot %s: %s", identifier, error.message)
            raise error from e
        return True

    log.info("Deleting snapshot %s", identifier)
    try:
        poll(attempt, policy, identifier, 'delete', cancel)
    except SnapshotTimeout as timeout:
        log.info("Snapshot %s still in use, trying one last time", identifier)
        if attempt() is None:
            raise SnapshotTimeout(identifier, 'delete', 'still in use, %s' % timeout.message) from timeout
