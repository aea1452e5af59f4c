"""Curated concept catalogue for database-driven topic selection."""

from typing import List

from viraltube.domain.models import Topic


def _topic(topic_id: str, headline: str, category: str, description: str) -> Topic:
    return Topic(
        id=topic_id,
        headline=headline,
        category=category,
        virality_score=90,
        description=description,
        sources=["Google Books", "Wikipedia"],
    )


CATALOG: List[Topic] = [
    _topic("myth-001", "Karna's untold loyalty and the curse that sealed his fate", "Mythology",
           "The life choices and curses that shaped Karna's end at Kurukshetra."),
    _topic("myth-002", "Barbarika: the warrior who could end the Mahabharata war in one minute", "Mythology",
           "Why Krishna asked for the head of the most powerful warrior."),
    _topic("myth-003", "Kalki avatar prophecies in the Puranas", "Mythology",
           "What the texts actually say about the end of Kali Yuga."),
    _topic("myth-004", "Ashwatthama: the immortal who still wanders", "Mythology",
           "Legends and sightings of the cursed son of Drona."),
    _topic("hist-001", "Kakatiya dynasty and the secrets of Warangal Fort", "History",
           "Rise and fall of the Kakatiyas and their engineering."),
    _topic("hist-002", "Sri Krishnadevaraya's golden age of Vijayanagara", "History",
           "Trade, art and war at the peak of the Vijayanagara empire."),
    _topic("hist-003", "The real story of the Koh-i-Noor from Golconda", "History",
           "How the diamond left the Kollur mines and never came back."),
    _topic("hist-004", "Rani Rudrama Devi: the queen who ruled as a king", "History",
           "Her battles, reforms and the mystery of her death."),
    _topic("sci-001", "Ancient Indian astronomy: Aryabhata's calculations", "Science",
           "Earth's rotation and pi, centuries before Europe."),
    _topic("sci-002", "Ramappa temple's floating bricks", "Science",
           "The lightweight bricks that float on water and survived earthquakes."),
    _topic("sci-003", "Lepakshi's hanging pillar explained", "Science",
           "The engineering behind the pillar that does not touch the ground."),
    _topic("tech-001", "How AI will change Indian jobs in the next five years", "Technology",
           "Which careers grow, which disappear, and how to prepare."),
    _topic("tech-002", "India's semiconductor mission and the chip race", "Technology",
           "Why chips became a geopolitical weapon and where India stands."),
    _topic("tech-003", "Chandrayaan-3 and the south pole discovery", "Technology",
           "What ISRO found and why the south pole matters."),
    _topic("geo-001", "The new Indian Ocean power struggle", "Geopolitics",
           "Bases, ports and alliances reshaping the region."),
    _topic("geo-002", "Water wars: the rivers that could start conflicts", "Geopolitics",
           "Dams and treaties on the rivers of South Asia."),
]
