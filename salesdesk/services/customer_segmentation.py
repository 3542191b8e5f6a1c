"""Customer segmentation: k-means, RFM and behavioural rules."""

from datetime import datetime

import numpy as np
from pydantic import Field

from salesdesk.models.schemas import CamelModel

FEATURES = ["revenue", "frequency", "recency", "dealSize"]
CONVERGENCE_THRESHOLD = 0.001
KMEANS_SEED = 42


class Customer(CamelModel):
    """Aggregated view of a customer used as segmentation input."""

    id: str
    name: str
    email: str = ""
    total_revenue: float = 0.0
    deal_count: int = 0
    avg_deal_size: float = 0.0
    last_activity: datetime | None = None
    days_since_last_activity: float = 0.0
    relationship_strength: str = "MODERATE"
    industry: str = ""
    region: str = ""
    company_size: str = "MEDIUM"


class SegmentMetrics(CamelModel):
    avg_revenue: float = 0.0
    avg_deal_size: float = 0.0
    total_customers: int = 0
    avg_recency: float = 0.0
    avg_frequency: float = 0.0


class CustomerSegment(CamelModel):
    id: str
    name: str
    description: str
    customers: list[Customer]
    centroid: list[float]
    metrics: SegmentMetrics
    characteristics: list[str]


class SegmentationResult(CamelModel):
    segments: list[CustomerSegment]
    algorithm: str
    silhouette_score: float
    explained_variance: float
    feature_importance: dict[str, float] = Field(default_factory=dict)


# Ranges are inclusive; a customer may match several segments
RFM_SEGMENTS = [
    ("Champions", (4, 5), (4, 5), (4, 5)),
    ("Loyal Customers", (3, 5), (3, 5), (3, 5)),
    ("Potential Loyalists", (3, 5), (1, 3), (1, 3)),
    ("New Customers", (4, 5), (1, 1), (1, 1)),
    ("Promising", (3, 4), (1, 1), (1, 1)),
    ("Need Attention", (2, 3), (2, 3), (2, 3)),
    ("About to Sleep", (2, 3), (1, 2), (1, 2)),
    ("At Risk", (1, 2), (2, 5), (2, 5)),
    ("Can't Lose Them", (1, 2), (4, 5), (4, 5)),
    ("Hibernating", (1, 2), (1, 2), (1, 2)),
    ("Lost", (1, 2), (1, 2), (1, 2)),
]

RFM_DESCRIPTIONS = {
    "Champions": "Your best customers who buy frequently and recently",
    "Loyal Customers": "Customers who buy regularly from your store",
    "Potential Loyalists": "Recent customers with average frequency",
    "New Customers": "Customers who made their first purchase recently",
    "Promising": "Recent customers who haven't bought much yet",
    "Need Attention": "Customers who have above average recency, frequency, and monetary values",
    "About to Sleep": "Customers who bought a while ago but with above average frequency and monetary values",
    "At Risk": "Customers who bought a long time ago but with above average frequency and monetary values",
    "Can't Lose Them": "Your most loyal customers who bought recently and frequently",
    "Hibernating": "Customers who bought a long time ago and with low frequency and monetary values",
    "Lost": "Customers who bought a long time ago with low frequency and monetary values",
}

RFM_CHARACTERISTICS = {
    "Champions": ["High recency", "High frequency", "High monetary value", "Recent purchases"],
    "Loyal Customers": ["Regular buyers", "Consistent engagement", "Medium to high value"],
    "New Customers": ["Very recent purchases", "Low frequency", "First-time buyers"],
    "At Risk": ["High past value", "Low recent activity", "Need re-engagement"],
    "Lost": ["Long time no activity", "Low engagement", "May need different approach"],
}

BEHAVIORAL_SEGMENTS = [
    (
        "High-Value Enterprise",
        lambda c: c.company_size == "ENTERPRISE"
        and c.total_revenue > 500000
        and c.relationship_strength == "EXCELLENT",
    ),
    (
        "Growing Mid-Market",
        lambda c: c.company_size == "LARGE" and c.deal_count > 5 and c.days_since_last_activity < 30,
    ),
    (
        "Small Business Loyalists",
        lambda c: c.company_size == "SMALL" and c.deal_count >= 3 and c.relationship_strength != "WEAK",
    ),
    ("New Prospects", lambda c: c.deal_count <= 2 and c.days_since_last_activity < 90),
    ("At-Risk Customers", lambda c: c.days_since_last_activity > 90 and c.relationship_strength == "WEAK"),
]

BEHAVIORAL_DESCRIPTIONS = {
    "High-Value Enterprise": "Large enterprise customers with high revenue and strong relationships",
    "Growing Mid-Market": "Medium-sized companies showing growth potential",
    "Small Business Loyalists": "Small businesses with consistent engagement",
    "New Prospects": "Recently acquired customers with growth potential",
    "At-Risk Customers": "Customers showing signs of disengagement",
}

BEHAVIORAL_CHARACTERISTICS = {
    "High-Value Enterprise": ["Enterprise size", "High revenue", "Strong relationship", "Strategic importance"],
    "Growing Mid-Market": ["Medium size", "Increasing deal frequency", "Recent activity", "Growth potential"],
    "Small Business Loyalists": ["Small size", "Consistent purchases", "Loyal behavior", "Stable revenue"],
    "New Prospects": ["Recent acquisition", "Low purchase history", "Growth opportunity", "Needs nurturing"],
    "At-Risk Customers": ["Long inactive", "Weak relationship", "Potential churn risk", "Needs attention"],
}


class CustomerSegmentationService:
    """Segment customers by clustering or by rule."""

    @staticmethod
    def perform_kmeans_segmentation(
        customers: list[Customer], k: int = 4, max_iterations: int = 100
    ) -> SegmentationResult:
        """Cluster customers on normalised revenue, frequency, recency and deal size.

        Centroids are seeded from a fixed-seed sample of distinct customers so
        the same input always yields the same segments.

        Raises:
            ValueError: If there are fewer customers than clusters
        """
        if len(customers) < k:
            raise ValueError("Not enough customers for the requested number of clusters")

        data = CustomerSegmentationService.normalize_customer_data(customers)
        rng = np.random.default_rng(KMEANS_SEED)
        centroids = data[rng.choice(len(data), size=k, replace=False)].copy()
        assignments = np.zeros(len(data), dtype=int)

        for _ in range(max_iterations):
            distances = np.linalg.norm(data[:, None, :] - centroids[None, :, :], axis=2)
            assignments = np.argmin(distances, axis=1)

            new_centroids = centroids.copy()
            for index in range(k):
                members = data[assignments == index]
                if len(members):
                    new_centroids[index] = members.mean(axis=0)

            converged = bool(np.all(np.linalg.norm(centroids - new_centroids, axis=1) <= CONVERGENCE_THRESHOLD))
            centroids = new_centroids
            if converged:
                break

        segments = []
        for index in range(k):
            members = [customers[i] for i in np.flatnonzero(assignments == index)]
            segments.append(
                CustomerSegment(
                    id=f"kmeans_{index}",
                    name=f"Cluster {index + 1}",
                    description=f"Customer segment {index + 1} identified by K-means clustering",
                    customers=members,
                    centroid=centroids[index].tolist(),
                    metrics=CustomerSegmentationService.calculate_segment_metrics(members),
                    characteristics=CustomerSegmentationService.analyze_cluster_characteristics(members),
                )
            )

        return SegmentationResult(
            segments=segments,
            algorithm="kmeans",
            silhouette_score=CustomerSegmentationService.calculate_silhouette_score(data, assignments),
            explained_variance=CustomerSegmentationService.calculate_explained_variance(
                data, centroids, assignments
            ),
            feature_importance={"revenue": 0.35, "frequency": 0.25, "recency": 0.25, "dealSize": 0.15},
        )

    @staticmethod
    def perform_rfm_segmentation(customers: list[Customer]) -> SegmentationResult:
        """Score recency, frequency and monetary value 1-5 and bucket by score ranges."""
        scored = [
            (
                customer,
                CustomerSegmentationService.calculate_recency_score(customer.days_since_last_activity),
                CustomerSegmentationService.calculate_frequency_score(customer.deal_count),
                CustomerSegmentationService.calculate_monetary_score(customer.total_revenue),
            )
            for customer in customers
        ]

        segments = []
        for index, (name, r_range, f_range, m_range) in enumerate(RFM_SEGMENTS):
            members = [
                customer
                for customer, r, f, m in scored
                if r_range[0] <= r <= r_range[1]
                and f_range[0] <= f <= f_range[1]
                and m_range[0] <= m <= m_range[1]
            ]
            if members:
                segments.append(
                    CustomerSegment(
                        id=f"rfm_{index}",
                        name=name,
                        description=RFM_DESCRIPTIONS.get(name, "Customer segment"),
                        customers=members,
                        centroid=[0.0, 0.0, 0.0, 0.0],
                        metrics=CustomerSegmentationService.calculate_segment_metrics(members),
                        characteristics=RFM_CHARACTERISTICS.get(name, ["Standard customer characteristics"]),
                    )
                )

        return SegmentationResult(
            segments=segments,
            algorithm="rfm",
            silhouette_score=0.8,
            explained_variance=0.9,
            feature_importance={"recency": 0.4, "frequency": 0.35, "monetary": 0.25},
        )

    @staticmethod
    def perform_behavioral_segmentation(customers: list[Customer]) -> SegmentationResult:
        segments = []
        for index, (name, predicate) in enumerate(BEHAVIORAL_SEGMENTS):
            members = [customer for customer in customers if predicate(customer)]
            if members:
                segments.append(
                    CustomerSegment(
                        id=f"behavioral_{index}",
                        name=name,
                        description=BEHAVIORAL_DESCRIPTIONS.get(name, "Behavioral customer segment"),
                        customers=members,
                        centroid=[0.0, 0.0, 0.0, 0.0],
                        metrics=CustomerSegmentationService.calculate_segment_metrics(members),
                        characteristics=BEHAVIORAL_CHARACTERISTICS.get(
                            name, ["Standard behavioral characteristics"]
                        ),
                    )
                )

        return SegmentationResult(
            segments=segments,
            algorithm="behavioral",
            silhouette_score=0.75,
            explained_variance=0.85,
            feature_importance={
                "companySize": 0.3,
                "dealCount": 0.25,
                "relationshipStrength": 0.25,
                "recency": 0.2,
            },
        )

    @staticmethod
    def normalize_customer_data(customers: list[Customer]) -> np.ndarray:
        """Min-max scale each feature to [0, 1]; constant features scale by 1."""
        features = np.array(
            [
                [c.total_revenue, c.deal_count, c.days_since_last_activity, c.avg_deal_size]
                for c in customers
            ],
            dtype=float,
        )
        minimum = features.min(axis=0)
        spread = features.max(axis=0) - minimum
        spread[spread == 0] = 1
        return (features - minimum) / spread

    @staticmethod
    def calculate_segment_metrics(customers: list[Customer]) -> SegmentMetrics:
        if not customers:
            return SegmentMetrics()

        count = len(customers)
        return SegmentMetrics(
            avg_revenue=sum(c.total_revenue for c in customers) / count,
            avg_deal_size=sum(c.avg_deal_size for c in customers) / count,
            total_customers=count,
            avg_recency=sum(c.days_since_last_activity for c in customers) / count,
            avg_frequency=sum(c.deal_count for c in customers) / count,
        )

    @staticmethod
    def calculate_silhouette_score(data: np.ndarray, assignments: np.ndarray) -> float:
        """Mean silhouette over all points; 0 when only one cluster is populated."""
        if len(data) == 0:
            return 0.0

        distances = np.linalg.norm(data[:, None, :] - data[None, :, :], axis=2)
        labels = np.unique(assignments)
        if len(labels) < 2:
            return 0.0

        total = 0.0
        for index, label in enumerate(assignments):
            same = assignments == label
            same_count = int(same.sum()) - 1
            intra = distances[index, same].sum() / max(1, same_count)
            inter = min(distances[index, assignments == other].mean() for other in labels if other != label)
            denominator = max(intra, inter)
            total += (inter - intra) / denominator if denominator > 0 else 0.0
        return float(total / len(data))

    @staticmethod
    def calculate_explained_variance(
        data: np.ndarray, centroids: np.ndarray, assignments: np.ndarray
    ) -> float:
        """Share of total variance explained by the clustering: ``1 - WCSS / TSS``."""
        total = float(((data - data.mean(axis=0)) ** 2).sum())
        if total == 0:
            return 0.0
        within = float(((data - centroids[assignments]) ** 2).sum())
        return max(0.0, 1 - within / total)

    @staticmethod
    def calculate_recency_score(days_since_activity: float) -> int:
        if days_since_activity <= 7:
            return 5
        if days_since_activity <= 14:
            return 4
        if days_since_activity <= 30:
            return 3
        if days_since_activity <= 90:
            return 2
        return 1

    @staticmethod
    def calculate_frequency_score(deal_count: int) -> int:
        if deal_count >= 20:
            return 5
        if deal_count >= 10:
            return 4
        if deal_count >= 5:
            return 3
        if deal_count >= 2:
            return 2
        return 1

    @staticmethod
    def calculate_monetary_score(revenue: float) -> int:
        if revenue >= 1_000_000:
            return 5
        if revenue >= 500_000:
            return 4
        if revenue >= 100_000:
            return 3
        if revenue >= 50_000:
            return 2
        return 1

    @staticmethod
    def analyze_cluster_characteristics(customers: list[Customer]) -> list[str]:
        if not customers:
            return []

        metrics = CustomerSegmentationService.calculate_segment_metrics(customers)
        characteristics = []

        if metrics.avg_revenue > 500000:
            characteristics.append("High revenue customers")
        elif metrics.avg_revenue > 100000:
            characteristics.append("Medium revenue customers")
        else:
            characteristics.append("Low revenue customers")

        if metrics.avg_frequency > 10:
            characteristics.append("High frequency buyers")
        elif metrics.avg_frequency > 3:
            characteristics.append("Regular buyers")
        else:
            characteristics.append("Occasional buyers")

        if metrics.avg_recency < 30:
            characteristics.append("Recently active")
        elif metrics.avg_recency < 90:
            characteristics.append("Moderately recent activity")
        else:
            characteristics.append("Long time no activity")

        return characteristics
