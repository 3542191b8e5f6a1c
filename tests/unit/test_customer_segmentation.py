"""Unit tests for customer segmentation."""

import numpy as np
import pytest

from salesdesk.services.customer_segmentation import Customer, CustomerSegmentationService


def make_customer(index: int, **fields) -> Customer:
    return Customer(id=str(index), name=f"Customer {index}", **fields)


@pytest.fixture
def two_groups() -> list[Customer]:
    """Four large recent buyers and four small dormant ones."""
    large = [
        make_customer(
            i,
            total_revenue=1_000_000 + i * 10_000,
            deal_count=20 + i,
            days_since_last_activity=5 + i,
            avg_deal_size=50_000,
        )
        for i in range(4)
    ]
    small = [
        make_customer(
            10 + i,
            total_revenue=10_000 + i * 1_000,
            deal_count=1,
            days_since_last_activity=200 + i,
            avg_deal_size=10_000,
        )
        for i in range(4)
    ]
    return large + small


@pytest.mark.unit
class TestKMeansSegmentation:
    """Tests for k-means segmentation."""

    def test_requires_enough_customers(self) -> None:
        """Test fewer customers than clusters is rejected."""
        customers = [make_customer(i) for i in range(3)]

        with pytest.raises(ValueError):
            CustomerSegmentationService.perform_kmeans_segmentation(customers, k=4)

    def test_segmentation_is_deterministic(self, two_groups: list[Customer]) -> None:
        """Test the same input always produces the same segments."""
        first = CustomerSegmentationService.perform_kmeans_segmentation(two_groups, k=2)
        second = CustomerSegmentationService.perform_kmeans_segmentation(two_groups, k=2)

        assert first.algorithm == "kmeans"
        assert len(first.segments) == 2
        assert sum(len(segment.customers) for segment in first.segments) == 8
        assert [[c.id for c in s.customers] for s in first.segments] == [
            [c.id for c in s.customers] for s in second.segments
        ]
        assert 0 <= first.explained_variance <= 1
        assert first.segments[0].name == "Cluster 1"


@pytest.mark.unit
class TestRuleSegmentation:
    """Tests for RFM and behavioural segmentation."""

    def test_rfm_champions(self) -> None:
        """Test a recent, frequent, high value customer is a champion."""
        champion = make_customer(1, days_since_last_activity=3, deal_count=25, total_revenue=2_000_000)
        dormant = make_customer(2, days_since_last_activity=200, deal_count=1, total_revenue=1_000)

        result = CustomerSegmentationService.perform_rfm_segmentation([champion, dormant])
        names = {segment.name: segment for segment in result.segments}

        assert result.algorithm == "rfm"
        assert [c.id for c in names["Champions"].customers] == ["1"]
        assert "Loyal Customers" in names
        assert [c.id for c in names["Hibernating"].customers] == ["2"]
        assert "Lost" in names
        assert names["Champions"].characteristics[0] == "High recency"

    def test_behavioral_segments(self) -> None:
        """Test rule based segments match their predicates."""
        enterprise = make_customer(
            1,
            company_size="ENTERPRISE",
            total_revenue=600_000,
            relationship_strength="EXCELLENT",
            deal_count=8,
            days_since_last_activity=100,
        )
        at_risk = make_customer(2, days_since_last_activity=120, relationship_strength="WEAK", deal_count=4)

        result = CustomerSegmentationService.perform_behavioral_segmentation([enterprise, at_risk])
        names = [segment.name for segment in result.segments]

        assert names == ["High-Value Enterprise", "At-Risk Customers"]
        assert result.segments[0].metrics.total_customers == 1

    def test_scores(self) -> None:
        """Test RFM score thresholds."""
        assert CustomerSegmentationService.calculate_recency_score(7) == 5
        assert CustomerSegmentationService.calculate_recency_score(8) == 4
        assert CustomerSegmentationService.calculate_recency_score(91) == 1
        assert CustomerSegmentationService.calculate_frequency_score(20) == 5
        assert CustomerSegmentationService.calculate_frequency_score(1) == 1
        assert CustomerSegmentationService.calculate_monetary_score(50_000) == 2


@pytest.mark.unit
class TestClusterQuality:
    """Tests for normalisation and cluster quality measures."""

    def test_constant_features_normalize_to_zero(self) -> None:
        """Test identical customers do not divide by zero."""
        customers = [make_customer(i, total_revenue=5, deal_count=2) for i in range(2)]

        data = CustomerSegmentationService.normalize_customer_data(customers)

        assert np.array_equal(data, np.zeros((2, 4)))

    def test_perfect_clustering(self) -> None:
        """Test tight, separated clusters score 1 on both measures."""
        data = np.array([[0.0], [0.0], [10.0], [10.0]])
        assignments = np.array([0, 0, 1, 1])
        centroids = np.array([[0.0], [10.0]])

        assert CustomerSegmentationService.calculate_silhouette_score(data, assignments) == pytest.approx(1)
        assert CustomerSegmentationService.calculate_explained_variance(
            data, centroids, assignments
        ) == pytest.approx(1)

    def test_single_cluster_silhouette(self) -> None:
        """Test one populated cluster has no silhouette."""
        data = np.array([[0.0], [1.0]])

        assert CustomerSegmentationService.calculate_silhouette_score(data, np.array([0, 0])) == 0

    def test_cluster_characteristics(self) -> None:
        """Test descriptive labels for a cluster."""
        customers = [make_customer(1, total_revenue=600_000, deal_count=12, days_since_last_activity=10)]

        assert CustomerSegmentationService.analyze_cluster_characteristics(customers) == [
            "High revenue customers",
            "High frequency buyers",
            "Recently active",
        ]
