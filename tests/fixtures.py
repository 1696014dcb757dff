"""Test data fixtures for journal tests"""

import json
from pathlib import Path

# 2024-01-15T10:00:00Z
T0_MS = 1705312800000


class TestDataFixtures:
    """Centralized sample exports, one per supported format"""

    @staticmethod
    def get_root_array_export():
        """On-device export: a visit, an activity and a path run"""
        return [
            {
                "startTime": "2024-01-15T10:00:00.000Z",
                "endTime": "2024-01-15T11:30:00.000Z",
                "visit": {
                    "topCandidate": {
                        "placeLocation": "geo:39.526000,-119.813000",
                        "placeID": "ChIJhome123",
                        "semanticType": "Home",
                        "probability": "0.85",
                    }
                },
            },
            {
                "startTime": "2024-01-15T11:30:00.000Z",
                "endTime": "2024-01-15T12:00:00.000Z",
                "activity": {
                    "start": "geo:39.526000,-119.813000",
                    "end": "geo:39.530000,-119.820000",
                    "topCandidate": {"type": "in passenger vehicle"},
                },
            },
            {
                "startTime": "2024-01-15T12:00:00.000Z",
                "endTime": "2024-01-15T14:00:00.000Z",
                "timelinePath": [
                    {"point": "geo:39.530000,-119.820000", "durationMinutesOffsetFromStartTime": "0"},
                    {"point": "geo:39.531000,-119.821000", "durationMinutesOffsetFromStartTime": "60"},
                ],
            },
        ]

    @staticmethod
    def get_locations_export():
        """Records.json: E7 samples in both timestamp encodings, plus one broken record"""
        return {
            "locations": [
                {
                    "latitudeE7": 395260000,
                    "longitudeE7": -1198130000,
                    "timestampMs": str(T0_MS),
                    "activity": [
                        {
                            "timestampMs": str(T0_MS),
                            "activity": [
                                {"type": "STILL", "confidence": 80},
                                {"type": "WALKING", "confidence": 15},
                            ],
                        }
                    ],
                },
                {
                    "latitudeE7": 395270000,
                    "longitudeE7": -1198140000,
                    "timestamp": "2024-01-15T10:05:00Z",
                },
                {"longitudeE7": -1198140000, "timestamp": "2024-01-15T10:10:00Z"},
            ]
        }

    @staticmethod
    def get_semantic_segments_export():
        """Android Timeline.json: a path run without sample times, a visit and an activity"""
        return {
            "semanticSegments": [
                {
                    "startTime": "2024-01-15T08:00:00.000-08:00",
                    "endTime": "2024-01-15T08:01:00.000-08:00",
                    "timelinePath": [
                        {"point": "39.5260000°, -119.8130000°"},
                        {"point": "39.5265000°, -119.8135000°"},
                        {"point": "39.5270000°, -119.8140000°"},
                    ],
                },
                {
                    "startTime": "2024-01-15T09:00:00.000-08:00",
                    "endTime": "2024-01-15T10:15:00.000-08:00",
                    "visit": {
                        "probability": 0.7,
                        "topCandidate": {
                            "placeId": "ChIJcafe456",
                            "semanticType": "UNKNOWN",
                            "placeLocation": {"latLng": "39.5280000°, -119.8150000°"},
                        },
                    },
                },
                {
                    "startTime": "2024-01-15T10:15:00.000-08:00",
                    "endTime": "2024-01-15T10:30:00.000-08:00",
                    "activity": {
                        "start": {"latLng": "39.5280000°, -119.8150000°"},
                        "end": {"latLng": "39.5260000°, -119.8130000°"},
                        "topCandidate": {"type": "WALKING"},
                    },
                },
            ]
        }

    @staticmethod
    def get_timeline_objects_export():
        """Semantic Location History: one place visit and one activity segment"""
        return {
            "timelineObjects": [
                {
                    "placeVisit": {
                        "location": {
                            "latitudeE7": 407128000,
                            "longitudeE7": -740060000,
                            "placeId": "ChIJoffice789",
                            "semanticType": "TYPE_WORK",
                            "address": "1 Centre St, New York, NY 10007, USA",
                        },
                        "duration": {
                            "startTimestamp": "2024-01-16T14:00:00Z",
                            "endTimestamp": "2024-01-16T18:00:00Z",
                        },
                        "visitConfidence": 92,
                    }
                },
                {
                    "activitySegment": {
                        "startLocation": {"latitudeE7": 407128000, "longitudeE7": -740060000},
                        "endLocation": {"latitudeE7": 407580000, "longitudeE7": -739855000},
                        "duration": {
                            "startTimestampMs": "1705427200000",
                            "endTimestampMs": "1705428400000",
                        },
                        "activityType": "IN_SUBWAY",
                        "simplifiedRawPath": {
                            "points": [
                                {"latE7": 407300000, "lngE7": -739950000},
                                {"latE7": 407450000, "lngE7": -739900000, "timestampMs": "1705428000000"},
                            ]
                        },
                    }
                },
            ]
        }

    @staticmethod
    def write_export(path: Path, data) -> Path:
        """Write an export document as JSON"""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(data, f, indent=2)
        return path
