"""Static curriculum lists served when no provider can answer."""
from typing import Dict, List

DEFAULT_SUBJECTS: List[str] = [
    "Biology",
    "Life Science",
    "Mathematics",
    "Physics",
    "Chemistry",
    "History",
    "Geography",
]

DEFAULT_CHAPTERS: Dict[int, List[str]] = {
    7: [
        "Nutrition in Plants and Animals",
        "Fibre and Fabric",
        "Weather, Climate, and Adaptation",
        "Respiration in Organisms",
        "Transportation in Living Beings",
        "Reproduction in Plants",
        "Forests: Our Lifeline",
    ],
    8: [
        "Crop Production and Management",
        "Microorganisms: Friend and Foe",
        "Conservation of Plants and Animals",
        "Cell: Structure and Functions",
        "Reproduction in Animals",
        "Reaching the Age of Adolescence",
    ],
    9: [
        "Life and its Diversity",
        "Levels of Organization of Life",
        "Physiological Processes of Life",
        "Biology and Human Welfare",
        "Environment and its Resources",
    ],
    10: [
        "Control and Coordination in living organisms",
        "Continuity of life",
        "Heredity and some common genetic diseases",
        "Evolution and adaptation",
        "Environment, its resources and their conservation",
    ],
    11: [
        "The Living World",
        "Biological Classification",
        "Plant Kingdom",
        "Animal Kingdom",
        "Structural Organisation in Animals and Plants",
        "Cell: The Unit of Life",
        "Biomolecules",
        "Cell Cycle and Cell Division",
        "Transport in Plants",
        "Mineral Nutrition",
        "Photosynthesis in Higher Plants",
        "Respiration in Plants",
        "Plant Growth and Development",
        "Digestion and Absorption",
        "Breathing and Exchange of Gases",
        "Body Fluids and Circulation",
        "Excretory Products and their Elimination",
        "Locomotion and Movement",
        "Neural Control and Coordination",
        "Chemical Coordination and Integration",
    ],
    12: [
        "Reproduction in Organisms",
        "Sexual Reproduction in Flowering Plants",
        "Human Reproduction",
        "Reproductive Health",
        "Principles of Inheritance and Variation",
        "Molecular Basis of Inheritance",
        "Evolution",
        "Human Health and Disease",
        "Strategies for Enhancement in Food Production",
        "Microbes in Human Welfare",
        "Biotechnology: Principles and Processes",
        "Biotechnology and its Applications",
        "Organisms and Populations",
        "Ecosystem",
        "Biodiversity and Conservation",
        "Environmental Issues",
    ],
}
