from enum import Enum


class ProductType(str, Enum):
    JERSEY = "jersey"
    SHORTS = "shorts"
    SOCKS = "socks"
    TROUSER = "trouser"
    JACKET = "jacket"
    BAG = "bag"
    HEADWEAR = "headwear"
    ADDON = "addon"
