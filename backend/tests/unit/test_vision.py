"""Tests for the Rekognition adapter and image preparation."""

from datetime import datetime, timezone
from io import BytesIO

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber
from PIL import Image

from face_match.vision import (
    ErrorKind,
    RekognitionVisionService,
    VisionServiceError,
    classify_client_error,
    prepare_image_bytes,
)


FACE_ID = "11111111-2222-3333-4444-555555555555"
IMAGE_ID = "66666666-7777-8888-9999-000000000000"
BBOX = {'Width': 0.2, 'Height': 0.3, 'Left': 0.1, 'Top': 0.15}


@pytest.fixture
def client():
    return boto3.client(
        "rekognition",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(client):
    with Stubber(client) as stubber:
        yield stubber
        stubber.assert_no_pending_responses()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def service(client, sleeps):
    return RekognitionVisionService(client=client, max_retries=2, backoff_base=0.2, sleep=sleeps.append)


def _client_error(code):
    return ClientError({'Error': {'Code': code, 'Message': 'details'}}, 'IndexFaces')


class TestClassifyClientError:

    @pytest.mark.parametrize("code,kind", [
        ('ResourceNotFoundException', ErrorKind.RESOURCE_MISSING),
        ('ResourceAlreadyExistsException', ErrorKind.ALREADY_EXISTS),
        ('ThrottlingException', ErrorKind.THROTTLED),
        ('ProvisionedThroughputExceededException', ErrorKind.THROTTLED),
        ('InvalidImageFormatException', ErrorKind.INVALID_IMAGE),
        ('InvalidParameterException', ErrorKind.VALIDATION),
        ('ServiceUnavailableException', ErrorKind.TRANSIENT),
        ('AccessDeniedException', ErrorKind.UNKNOWN),
    ])
    def test_codes(self, code, kind):
        error = classify_client_error(_client_error(code))
        assert error.kind == kind
        assert error.code == code
        assert code in str(error)


class TestCollections:
    """Collection calls through a stubbed client."""

    def test_create(self, service, stubber):
        stubber.add_response(
            'create_collection',
            {'StatusCode': 200, 'CollectionArn': 'arn:aws:rekognition:us-east-1:1:collection/event-42'},
            {'CollectionId': 'event-42'}
        )
        service.create_collection('event-42')

    def test_create_existing(self, service, stubber):
        stubber.add_client_error('create_collection', service_error_code='ResourceAlreadyExistsException')
        with pytest.raises(VisionServiceError) as exc_info:
            service.create_collection('event-42')
        assert exc_info.value.kind == ErrorKind.ALREADY_EXISTS

    def test_describe(self, service, stubber):
        created = datetime(2024, 5, 1, tzinfo=timezone.utc)
        stubber.add_response(
            'describe_collection',
            {'FaceCount': 12, 'FaceModelVersion': '7.0', 'CollectionARN': 'arn:x', 'CreationTimestamp': created},
            {'CollectionId': 'event-42'}
        )
        info = service.describe_collection('event-42')
        assert info['face_count'] == 12
        assert info['face_model_version'] == '7.0'

    def test_describe_missing(self, service, stubber):
        stubber.add_client_error('describe_collection', service_error_code='ResourceNotFoundException')
        with pytest.raises(VisionServiceError) as exc_info:
            service.describe_collection('event-42')
        assert exc_info.value.kind == ErrorKind.RESOURCE_MISSING


class TestIndexFaces:

    def test_index_sends_external_id_and_parses_records(self, service, stubber):
        stubber.add_response(
            'index_faces',
            {
                'FaceRecords': [{
                    'Face': {
                        'FaceId': FACE_ID,
                        'BoundingBox': BBOX,
                        'ImageId': IMAGE_ID,
                        'ExternalImageId': 'p1',
                        'Confidence': 99.5,
                    }
                }],
                'UnindexedFaces': [],
            },
            {
                'CollectionId': 'event-42',
                'Image': {'Bytes': b'jpeg-bytes'},
                'ExternalImageId': 'p1',
                'DetectionAttributes': ['DEFAULT'],
                'MaxFaces': 15,
                'QualityFilter': 'NONE',
            }
        )

        records = service.index_faces('event-42', b'jpeg-bytes', external_id='p1')

        assert len(records) == 1
        assert records[0].face_id == FACE_ID
        assert records[0].external_id == 'p1'
        assert records[0].bounding_box.left == 0.1

    def test_index_no_faces(self, service, stubber):
        stubber.add_response('index_faces', {'FaceRecords': []})
        assert service.index_faces('event-42', b'jpeg-bytes', external_id='p1') == []

    def test_missing_collection(self, service, stubber, sleeps):
        stubber.add_client_error('index_faces', service_error_code='ResourceNotFoundException')
        with pytest.raises(VisionServiceError) as exc_info:
            service.index_faces('event-42', b'jpeg-bytes', external_id='p1')
        assert exc_info.value.kind == ErrorKind.RESOURCE_MISSING
        assert sleeps == []


class TestThrottlingRetry:
    """Throttled calls are retried with exponential backoff."""

    def test_retry_then_success(self, service, stubber, sleeps):
        stubber.add_client_error('index_faces', service_error_code='ThrottlingException')
        stubber.add_client_error('index_faces', service_error_code='ProvisionedThroughputExceededException')
        stubber.add_response('index_faces', {'FaceRecords': []})

        assert service.index_faces('event-42', b'jpeg-bytes', external_id='p1') == []
        assert sleeps == [pytest.approx(0.2), pytest.approx(0.4)]

    def test_retries_exhausted(self, service, stubber, sleeps):
        for _ in range(3):
            stubber.add_client_error('index_faces', service_error_code='ThrottlingException')

        with pytest.raises(VisionServiceError) as exc_info:
            service.index_faces('event-42', b'jpeg-bytes', external_id='p1')

        assert exc_info.value.kind == ErrorKind.THROTTLED
        assert len(sleeps) == 2


class TestSearchByImage:

    def test_search(self, service, stubber):
        stubber.add_response(
            'search_faces_by_image',
            {
                'SearchedFaceBoundingBox': BBOX,
                'SearchedFaceConfidence': 99.9,
                'FaceMatches': [
                    {'Similarity': 96.0, 'Face': {'FaceId': FACE_ID, 'ExternalImageId': 'p1',
                                                  'BoundingBox': BBOX, 'Confidence': 99.0}},
                    {'Similarity': 91.0, 'Face': {'FaceId': FACE_ID, 'BoundingBox': BBOX}},
                ],
            },
            {
                'CollectionId': 'event-42',
                'Image': {'Bytes': b'selfie'},
                'MaxFaces': 100,
                'FaceMatchThreshold': 80.0,
                'QualityFilter': 'AUTO',
            }
        )

        response = service.search_by_image('event-42', b'selfie')

        assert response.searched_face_confidence == 99.9
        assert [m.external_id for m in response.matches] == ['p1', None]
        assert response.matches[0].similarity == 96.0

    def test_no_face_in_query(self, service, stubber):
        stubber.add_client_error('search_faces_by_image', service_error_code='InvalidParameterException')
        with pytest.raises(VisionServiceError) as exc_info:
            service.search_by_image('event-42', b'selfie')
        assert exc_info.value.kind == ErrorKind.INVALID_IMAGE
        assert exc_info.value.code == 'InvalidParameterException'

    def test_invalid_parameter_elsewhere_is_validation(self, service, stubber):
        stubber.add_client_error('create_collection', service_error_code='InvalidParameterException')
        with pytest.raises(VisionServiceError) as exc_info:
            service.create_collection('event-42')
        assert exc_info.value.kind == ErrorKind.VALIDATION


class TestPrepareImageBytes:
    """Tests for oversized image handling."""

    def test_small_image_unchanged(self):
        data = b'x' * 100
        assert prepare_image_bytes(data, max_bytes=1000) is data

    def test_large_image_downscaled(self):
        buf = BytesIO()
        Image.effect_noise((400, 300), 64).convert("RGB").save(buf, format="PNG")
        data = buf.getvalue()

        prepared = prepare_image_bytes(data, max_bytes=len(data) - 1, max_dim=100)

        im = Image.open(BytesIO(prepared))
        assert im.format == "JPEG"
        assert max(im.size) <= 100
        assert len(prepared) < len(data)

    def test_undecodable_large_image(self):
        with pytest.raises(VisionServiceError) as exc_info:
            prepare_image_bytes(b'not an image' * 100, max_bytes=10)
        assert exc_info.value.kind == ErrorKind.INVALID_IMAGE
