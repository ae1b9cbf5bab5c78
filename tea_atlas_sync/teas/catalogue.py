"""
Built-in starter catalogue.

The same ordered catalogue is shown to every user. Entries are never
persisted per user unless the user edits one (the edited copy is then a
saved record with the starter's id).
"""

from __future__ import annotations

from dataclasses import replace

from .types import Tea, TeaType


def _starter(
    tea_id: str,
    name: str,
    chinese_name: str,
    tea_type: TeaType,
    province: str,
    region: str,
    lat: float,
    lng: float,
    elevation: float | None,
    flavor: str,
    description: str,
) -> Tea:
    return Tea(
        id=tea_id,
        name=name,
        chinese_name=chinese_name,
        tea_type=tea_type,
        province=province,
        region=region,
        lat=lat,
        lng=lng,
        elevation=elevation,
        flavor=flavor,
        description=description,
        starter=True,
    )


_CATALOGUE: tuple[Tea, ...] = (
    _starter(
        "longjing", "Longjing (Dragon Well)", "西湖龙井", TeaType.GREEN,
        "Zhejiang", "West Lake, Hangzhou", 30.2330, 120.1180, 150,
        "Chestnut, toasted, sweet grass",
        "Pan-fired flat leaves from the hills around West Lake.",
    ),
    _starter(
        "biluochun", "Biluochun", "碧螺春", TeaType.GREEN,
        "Jiangsu", "Dongting Mountain, Suzhou", 31.0800, 120.2700, 100,
        "Floral, fruity, vegetal",
        "Tightly rolled spirals grown among fruit orchards on Lake Tai.",
    ),
    _starter(
        "huangshan-maofeng", "Huangshan Maofeng", "黄山毛峰", TeaType.GREEN,
        "Anhui", "Huangshan", 30.1300, 118.1700, 800,
        "Orchid, sweet, light",
        "Downy buds from the misty slopes of the Yellow Mountains.",
    ),
    _starter(
        "tieguanyin", "Tieguanyin", "安溪铁观音", TeaType.OOLONG,
        "Fujian", "Anxi", 25.0600, 118.1900, 600,
        "Orchid, creamy, mineral",
        "Rolled oolong named after the Iron Goddess of Mercy.",
    ),
    _starter(
        "da-hong-pao", "Da Hong Pao", "大红袍", TeaType.OOLONG,
        "Fujian", "Wuyi Mountains", 27.7200, 117.9600, 500,
        "Roasted, stone fruit, mineral",
        "Heavily roasted rock oolong from the Wuyi cliffs.",
    ),
    _starter(
        "dong-ding", "Dong Ding Oolong", "冻顶乌龙", TeaType.OOLONG,
        "Taiwan", "Lugu, Nantou", 23.7500, 120.7500, 700,
        "Honey, nutty, baked",
        "Medium-roast rolled oolong from Frozen Summit mountain.",
    ),
    _starter(
        "keemun", "Keemun", "祁门红茶", TeaType.BLACK,
        "Anhui", "Qimen", 29.8500, 117.7200, 300,
        "Cocoa, pine smoke, stone fruit",
        "Classic Anhui black tea with a winey, orchid finish.",
    ),
    _starter(
        "dianhong", "Dianhong", "滇红", TeaType.BLACK,
        "Yunnan", "Fengqing", 24.5800, 99.9300, 1800,
        "Malty, honey, pepper",
        "Golden-tipped black tea from broad-leaf Yunnan cultivars.",
    ),
    _starter(
        "lapsang-souchong", "Lapsang Souchong", "正山小种", TeaType.BLACK,
        "Fujian", "Tongmu, Wuyi Mountains", 27.7500, 117.6800, 1000,
        "Pine smoke, longan, resin",
        "Pine-smoked black tea from the village of Tongmu.",
    ),
    _starter(
        "baihao-yinzhen", "Silver Needle", "白毫银针", TeaType.WHITE,
        "Fujian", "Fuding", 27.3300, 120.2000, 200,
        "Hay, melon, honey",
        "Unopened downy buds, withered and dried with minimal handling.",
    ),
    _starter(
        "bai-mudan", "White Peony", "白牡丹", TeaType.WHITE,
        "Fujian", "Zhenghe", 27.3700, 118.8600, 400,
        "Floral, apricot, fresh hay",
        "One bud and two leaves, fuller bodied than Silver Needle.",
    ),
    _starter(
        "menghai-puerh", "Menghai Pu'er", "勐海普洱", TeaType.PUERH,
        "Yunnan", "Menghai, Xishuangbanna", 21.9600, 100.4500, 1200,
        "Earthy, camphor, dark sugar",
        "Compressed cakes from the Menghai tea mountains.",
    ),
    _starter(
        "junshan-yinzhen", "Junshan Yinzhen", "君山银针", TeaType.YELLOW,
        "Hunan", "Junshan Island, Yueyang", 29.3700, 113.0000, 50,
        "Sweet corn, mellow, nutty",
        "Rare yellow tea from an island in Dongting Lake.",
    ),
    _starter(
        "mengding-huangya", "Mengding Huangya", "蒙顶黄芽", TeaType.YELLOW,
        "Sichuan", "Mengding Shan, Ya'an", 30.0800, 103.0500, 1400,
        "Toasted grain, chestnut, soft",
        "Smothered yellow bud tea from one of China's oldest tea mountains.",
    ),
)


def starter_teas() -> list[Tea]:
    """Return fresh copies of the catalogue in catalogue order."""
    return [replace(tea) for tea in _CATALOGUE]


def starter_ids() -> frozenset[str]:
    return frozenset(tea.id for tea in _CATALOGUE)


def is_starter_id(tea_id: str) -> bool:
    return any(tea.id == tea_id for tea in _CATALOGUE)


def get_starter(tea_id: str) -> Tea | None:
    for tea in _CATALOGUE:
        if tea.id == tea_id:
            return replace(tea)
    return None
