"""
Analysis Result Schema
Typed shape of a saju analysis as stored and as returned to the UI.

Engine outputs (chart, oheng, scores, personality) are plain serialized
blocks; the narrative block is fully typed because the redaction gate
rewrites it field by field.
"""
from typing import Optional, Dict, List, Any, Literal
from pydantic import BaseModel, Field


class CoreMessage(BaseModel):
    """Free teaser shown above the paywall."""
    concern: str
    hook: str
    insight: str
    urgency: str
    cta: str


class FortuneAdvice(BaseModel):
    overall: str
    wealth: str
    love: str
    career: str
    health: str


class PeerComparison(BaseModel):
    """Percentile-style standing vs. same-age peers (lower = better, 'top N%')."""
    career_maturity: int = Field(..., ge=1, le=99)
    decision_stability: int = Field(..., ge=1, le=99)
    wealth_management: int = Field(..., ge=1, le=99)
    risk_exposure: Literal["low", "average", "high"]
    summary: str


class ZodiacBlock(BaseModel):
    sign: str
    name: str
    symbol: str
    element: str
    keywords: List[str]
    harmony_score: int
    harmony_description: str
    integrated_insight: str
    year_forecast: str


class AINarrative(BaseModel):
    """
    Narrative fields.

    Free teasers: core_message, personality_reading, peer_comparison.
    Everything else is premium and goes through the redaction policy.
    """

    core_message: CoreMessage
    personality_reading: str
    peer_comparison: Optional[PeerComparison] = None

    fortune_advice: FortuneAdvice
    warning_advice: str
    action_plan: List[str]

    life_path: str
    day_master_analysis: str
    ten_year_fortune: str
    yearly_fortune: str
    monthly_fortune: str
    relationship_analysis: str
    career_guidance: str
    wealth_strategy: str
    health_advice: str
    spiritual_guidance: str


class AnalysisResult(BaseModel):
    """Aggregate root of one saju analysis."""

    name: Optional[str] = None
    birth: Dict[str, Any]
    chart: Dict[str, Any]
    oheng: Dict[str, Any]
    scores: Dict[str, int]
    personality: Dict[str, Any]
    narrative: AINarrative
    daeun: List[Dict[str, Any]] = Field(default_factory=list)
    zodiac: Optional[ZodiacBlock] = None
    tier: str = "basic"
