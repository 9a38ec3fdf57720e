import os
import time
import logging

LOGLEVEL = os.getenv('LOG_LEVEL', 'ERROR').strip()
DEFAULT_REGION = os.getenv('AWS_DEFAULT_REGION', 'us-east-1').strip()
COPY_TIMEOUT = int(os.getenv('COPY_TIMEOUT', '7200'))
DELETE_TIMEOUT = int(os.getenv('DELETE_TIMEOUT', '300'))
POLL_DELAY = float(os.getenv('POLL_DELAY', '30'))
POLL_MAX_DELAY = float(os.getenv('POLL_MAX_DELAY', '120'))
POLL_MAX_ATTEMPTS = int(os.getenv('POLL_MAX_ATTEMPTS', '0'))
LAMBDA_SAFETY_MARGIN = float(os.getenv('LAMBDA_SAFETY_MARGIN', '10'))

NOT_FOUND_CODES = [ 'DBSnapshotNotFound', 'DBSnapshotNotFoundFault', 'InvalidDBSnapshot.NotFound', 'InvalidSnapshot.NotFound' ]
IN_USE_CODES = [ 'InvalidDBSnapshotState', 'InvalidDBSnapshotStateFault', 'SnapshotInUse' ]

logger = logging.getLogger('rds_snapshots')
logger.setLevel(LOGLEVEL.upper())


class _Unset(object):
    def __repr__(self):
        return 'UNSET'

# Marks an optional request field the caller never set
UNSET = _Unset()


class SnapshotError(Exception):
    """Base error, carries what was attempted on which snapshot."""

    def __init__(self, identifier, operation, message):
        target = operation if identifier is None else '%s %s' % (operation, identifier)
        super().__init__('%s: %s' % (target, message))
        self.identifier = identifier
        self.operation = operation
        self.message = message

class SnapshotNotFound(SnapshotError):
    pass

class SnapshotInUse(SnapshotError):
    pass

class SnapshotTimeout(SnapshotError):
    pass

class SnapshotRejected(SnapshotError):
    pass

class SnapshotCancelled(SnapshotError):
    pass

class SnapshotFailed(SnapshotError):
    def __init__(self, identifier, operation, status):
        super().__init__(identifier, operation, 'snapshot reached status %s' % status)
        self.status = status

class NoMatch(SnapshotError):
    pass

class AmbiguousSelection(SnapshotError):
    pass

class InvalidCriteria(SnapshotError):
    pass


def snapshot_logger(identifier, operation):
    return logging.LoggerAdapter(logger, { 'snapshot': identifier, 'operation': operation })

def error_code(e):
    return e.response.get('Error', {}).get('Code', '')

def error_message(e):
    error = e.response.get('Error', {})
    return '%s (%s)' % (error.get('Message', ''), error.get('Code', ''))

def client_error(e, identifier, operation):
    """Map a botocore ClientError onto the snapshot error it stands for."""
    if error_code(e) in NOT_FOUND_CODES:
        return SnapshotNotFound(identifier, operation, error_message(e))
    if error_code(e) in IN_USE_CODES:
        return SnapshotInUse(identifier, operation, error_message(e))
    return SnapshotError(identifier, operation, error_message(e))

def paginate_api_call(client, api_call, objecttype, *args, **kwargs):
    response = {}
    response[objecttype] = []
    paginator = client.get_paginator(api_call)
    page_iterator = paginator.paginate(**kwargs)
    for page in page_iterator:
        for item in page[objecttype]:
            response[objecttype].append(item)

    return response

def set_if_present(request, key, value):
    if value is not UNSET:
        request[key] = value
    return request

def tag_list(tags):
    # aws: keys are reserved and rejected by RDS
    return [ { 'Key': key, 'Value': value } for key, value in tags.items() if not key.startswith('aws:') ]

def tag_map(collection):
    results = {}
    for tag in collection:
        # System tags are managed by AWS
        if tag['Key'].startswith('aws:'):
            continue
        results[tag['Key']] = tag['Value']
    return results


class WaitPolicy(object):
    """How long and how often to retry a remote call.

    timeout is the overall budget in seconds. Intervals start at delay and
    grow by backoff up to max_delay, never past the deadline. max_attempts
    bounds the number of calls; 0 leaves only the deadline.
    """

    def __init__(self, timeout, delay=POLL_DELAY, max_delay=POLL_MAX_DELAY, max_attempts=POLL_MAX_ATTEMPTS, backoff=2.0, clock=time.monotonic, sleep=time.sleep):
        self.timeout = timeout
        self.delay = delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.clock = clock
        self.sleep = sleep

    def interval(self, attempt):
        seconds = self.delay
        for _ in range(attempt - 1):
            # Stop growing once capped so long polls never overflow
            if seconds <= 0 or seconds >= self.max_delay or self.backoff <= 1:
                break
            seconds *= self.backoff
        return min(seconds, self.max_delay)

    def exhausted(self, attempt, deadline):
        if self.max_attempts and attempt >= self.max_attempts:
            return True
        return self.clock() >= deadline

    def pause(self, seconds, cancel=None):
        # Returns True when cancel was set while waiting
        if cancel is not None:
            return cancel.wait(seconds)
        self.sleep(seconds)
        return False


def lambda_policy(timeout, context=None):
    """WaitPolicy that gives up before the Lambda invocation is killed."""
    if context is not None:
        remaining = context.get_remaining_time_in_millis() / 1000.0 - LAMBDA_SAFETY_MARGIN
        if remaining < timeout:
            logger.info("Limiting wait to %.1fs of remaining Lambda time", max(remaining, 0))
        timeout = max(min(timeout, remaining), 0)
    return WaitPolicy(timeout)


def poll(check, policy, identifier, operation, cancel=None):
    """Call check() until it returns something other than None.

    Raises SnapshotTimeout once the policy is exhausted and SnapshotCancelled
    as soon as cancel is set. Exceptions raised by check() propagate as is.
    """
    log = snapshot_logger(identifier, operation)
    deadline = policy.clock() + policy.timeout
    attempt = 0
    while True:
        if cancel is not None and cancel.is_set():
            raise SnapshotCancelled(identifier, operation, 'cancelled after %i attempt(s)' % attempt)

        attempt += 1
        result = check()
        if result is not None:
            return result

        if policy.exhausted(attempt, deadline):
            raise SnapshotTimeout(identifier, operation, 'gave up after %i attempt(s) in %ss' % (attempt, policy.timeout))

        seconds = max(min(policy.interval(attempt), deadline - policy.clock()), 0)
        log.debug('%s %s pending, attempt %i, next check in %.1fs', operation, identifier, attempt, seconds)
        if policy.pause(seconds, cancel):
            raise SnapshotCancelled(identifier, operation, 'cancelled after %i attempt(s)' % attempt)
