from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ParseMenuImageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    menu_id: Optional[str] = Field(default=None, alias="menuId")
    import_images: bool = Field(default=True, alias="importImages")


class TranslateMenuRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    menu_id: Optional[str] = Field(default=None, alias="menuId")
    target_language: Optional[str] = Field(default=None, alias="targetLanguage")
    language_name: Optional[str] = Field(default=None, alias="languageName")


class TranslateInterfaceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    language_code: Optional[str] = Field(default=None, alias="languageCode")
    language_name: Optional[str] = Field(default=None, alias="languageName")


class ExtractedMenuItem(BaseModel):
    model_config = ConfigDict(extra="allow")
    name: str
    description: Optional[str] = None
    price: Optional[Union[float, str]] = None
    allergenes: Optional[List[str]] = None
    vegetarian: Optional[bool] = None
    vegan: Optional[bool] = None
    gluten_free: Optional[bool] = None
    spicy: Optional[bool] = None


class ExtractedCategory(BaseModel):
    model_config = ConfigDict(extra="allow")
    name: str
    description: Optional[str] = None
    items: List[ExtractedMenuItem]


class ExtractedMenu(BaseModel):
    """Shape the extraction model is asked to produce."""

    model_config = ConfigDict(extra="allow")
    categories: List[ExtractedCategory]


class TranslationUnit(BaseModel):
    model_config = ConfigDict(extra="ignore")
    type: str
    id: Union[str, int]
    name: Optional[str] = None
    description: Optional[str] = None
